"""Centralised configuration for the city simulation core."""
from __future__ import annotations

from typing import Dict, List, Tuple

# ---------------------------------------------------------------------------
# Tick timing (milliseconds)

LONG_TICK_TIME = 6 * 60 * 60 * 1000
SHORT_TICK_TIME = 5 * 60 * 1000
LONG_TICKS_PER_DAY = 4
SHORT_TICKS_PER_LONG_TICK = LONG_TICK_TIME // SHORT_TICK_TIME

# Upper bound of long ticks processed per advance; the rest are fast-forwarded.
MAX_LONG_TICKS_PER_ADVANCE = 4
SAVE_RETRY_DELAY_MS = 1000

# Resource capacity defaults to five days' worth of flow.
CAPACITY_MULTIPLIER = 5 * LONG_TICKS_PER_DAY

NOTIFICATION_QUEUE_LIMIT = 50

# ---------------------------------------------------------------------------
# City flags unlocked by peak population

POLICE_PROTECTION_MATTERS = "PoliceProtectionMatters"
FIRE_PROTECTION_MATTERS = "FireProtectionMatters"
FOOD_MATTERS = "FoodMatters"
EDUCATION_MATTERS = "EducationMatters"
HEALTHCARE_MATTERS = "HealthcareMatters"
B12_MATTERS = "B12Matters"
CITIZEN_DIET_FULL_SWING = "CitizenDietFullSwing"
GREENHOUSE_GASES_MATTER = "GreenhouseGasesMatter"
UNLOCKED_GAME_DEV = "UnlockedGameDev"
REMINDED_ABOUT_SPRAWL = "RemindedAboutResidencesNeedingBusinesses"

POPULATION_UNLOCKS: List[Tuple[int, str]] = [
    (100, POLICE_PROTECTION_MATTERS),
    (250, FIRE_PROTECTION_MATTERS),
    (500, FOOD_MATTERS),
    (800, EDUCATION_MATTERS),
    (1400, HEALTHCARE_MATTERS),
    (1800, B12_MATTERS),
    (2500, CITIZEN_DIET_FULL_SWING),
    (3500, GREENHOUSE_GASES_MATTER),
]

# ---------------------------------------------------------------------------
# Happiness

HAPPINESS_BASELINE = 0.5

POLICE_MULTIPLIER_POSITIVE = 0.1
POLICE_MULTIPLIER_NEGATIVE = 0.15
POLICE_TERM_CAP = 0.5
POLICE_DISPLAY_MAX = 0.05
POLICE_FREE_BASELINE = 0.04
POLICE_GAP_POPULATION = 150

FIRE_MULTIPLIER = 0.05
FIRE_FREE_BASELINE = 0.045
FIRE_GAP_POPULATION = 325

SERVICE_GAP_PENALTY = -0.1

PARTICULATE_POLLUTION_WEIGHT = -0.12
NOISE_WEIGHT = -0.07
GREENHOUSE_GASES_WEIGHT = -0.05

BUSINESS_PRESENCE_WEIGHT = 0.05
LAND_VALUE_WEIGHT = 0.05

TAX_BASELINE = 0.09
INCOME_TAX_SLOPE = -3.0
SALES_TAX_SLOPE = -2.0
PROPERTY_TAX_SLOPE = -1.0

LUXURY_WEIGHT = 0.12
LUXURY_GAP_POPULATION = 550
HEALTHCARE_WEIGHT = 0.1
HEALTHCARE_FREE_BASELINE = 0.09
HEALTHCARE_GAP_POPULATION = 1050
EDUCATION_WEIGHT = 0.1
EDUCATION_FREE_BASELINE = 0.09
HIGH_TECH_UNLOCK_EDUCATION = 0.9
FOOD_SATISFACTION_WEIGHT = 0.13

RESIDENTIAL_PENALTY_WEIGHT = 0.75

# Smoothing applied to the happiness resource every long tick.
HAPPINESS_RISE_RATE = 0.1
HAPPINESS_FALL_RATE = 0.2
HAPPINESS_MIN_STEP = 0.001

# ---------------------------------------------------------------------------
# Residential dynamics

MIN_GLOBAL_CHANCE_FOR_UPGRADE = 0.5999
MIN_DENSITY_FOR_UPGRADE = 0.34999
MIN_DENSITY_FOR_APARTMENTS = 0.24999
HIGHRISE_MIN_BUSINESS_PRESENCE = 0.4
HIGHRISE_MIN_DESIRABILITY = 0.5
HIGHRISE_MIN_PEAK_POPULATION = 330
SKYSCRAPER_MIN_BUSINESS_PRESENCE = 0.5
SKYSCRAPER_MIN_DESIRABILITY = 0.65
SKYSCRAPER_MIN_PEAK_POPULATION = 800

SPAWN_HAPPINESS_OFFSET = 0.4
SPAWN_HAPPINESS_SCALE = 1.667
SPAWN_SALES_CAP = 0.05
SPAWN_SALES_SCALE = 0.001
SPAWN_FURNITURE_WEIGHT = 0.08
POPULATION_DROP_RATIO = 0.9

DESIRABILITY_BASELINE = -0.15
DESIRABILITY_EDUCATION_WEIGHT = 0.25
DESIRABILITY_SAFETY_CAP = 0.25
DESIRABILITY_HEALTH_WEIGHT = 0.3
DESIRABILITY_NOISE_WEIGHT = 0.15 / 3
DESPAWN_DAMAGE_WEIGHT = 0.5

# A city this spread out gets a one-off advisor notice.
SPRAWL_MIN_HOUSES = 10
SPRAWL_MAX_DENSE_RESIDENCES = 3

# ---------------------------------------------------------------------------
# Population

POPULATION_SNAP_DISTANCE = 5
POPULATION_MAX_DIVISOR = 5
POPULATION_DIVISOR_SCALE = 35

# ---------------------------------------------------------------------------
# Research

RESEARCH_FUDGE_FACTOR = 0.9995
FREE_RESEARCH_SNAP = 0.01

# ---------------------------------------------------------------------------
# Market liquidity

BASE_BUY_CAPACITY = 20
BUY_CAPACITY_STEP = 5
BUY_CAPACITY_POPULATION_INCREMENTS: List[int] = [
    1000, 3000, 6000, 10000, 15000, 21000, 28000, 36000, 45000, 55000, 66000, 78000, 91000,
]
EXPENSIVE_PRICE = 9
EXPENSIVE_PRICE_MIN_POPULATION = 6000
PRICEY_PRICE = 6
PRICEY_MULTIPLIER = 0.6
MODERATE_PRICE = 4
MODERATE_MULTIPLIER = 0.8
DAILY_LIQUIDITY_REGROWTH = 0.2

CONSTRUCTION_RESOURCES = {"steel", "iron", "stone", "wood", "lumber", "glass"}
CONSTRUCTION_SALES_DECAY = 0.95

GREENHOUSE_ACCUMULATION = 0.01

# Power bought from outside the city when local plants fall short.
POWER_IMPORT_PRICE = 0.005
DEFAULT_POWER_IMPORT_LIMIT = 50.0

# Snapshot of a tax table as stored on a new city.
DEFAULT_TAX_RATES: Dict[str, float] = {"income": 0.09, "sales": 0.09, "property": 0.09}

EPSILON = 0.0001
