"""Technology research and adoption."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional, Tuple

from . import config
from .building_catalog import UnknownCatalogEntryError
from .resources import ResourceType, normalise_resource

if TYPE_CHECKING:  # pragma: no cover
    from .city import City


logger = logging.getLogger(__name__)


@dataclass
class Tech:
    """A research item.

    ``costs`` is the remaining cost and shrinks as partial funding is spent;
    ``original_costs`` never changes after construction.
    """

    id: str
    name: str
    costs: Dict[ResourceType, float]
    prerequisites: Tuple[str, ...] = ()
    adoption_growth: float = 0.1
    adoption_rate: float = 0.0
    researched: bool = False
    unavailable: bool = False
    unlocks_flags: Tuple[str, ...] = ()
    description: str = ""
    original_costs: Dict[ResourceType, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.costs = {normalise_resource(key): float(value) for key, value in self.costs.items()}
        if not self.original_costs:
            self.original_costs = dict(self.costs)
        self.prerequisites = tuple(self.prerequisites)

    def copy(self) -> "Tech":
        return Tech(
            id=self.id,
            name=self.name,
            costs=dict(self.costs),
            prerequisites=tuple(self.prerequisites),
            adoption_growth=self.adoption_growth,
            adoption_rate=self.adoption_rate,
            researched=self.researched,
            unavailable=self.unavailable,
            unlocks_flags=tuple(self.unlocks_flags),
            description=self.description,
            original_costs=dict(self.original_costs),
        )

    def adjust_cost(self, resource: ResourceType | str, amount: float, is_fraction: bool = False) -> None:
        """Shift one cost component; components that fall below 1 are dropped."""

        key = normalise_resource(resource)
        if key not in self.costs:
            return
        current = self.costs[key]
        current += amount * (current if is_fraction else 1.0)
        if current < 1:
            del self.costs[key]
        else:
            self.costs[key] = current

    def apply_effects(self, city: "City") -> None:
        for flag in self.unlocks_flags:
            city.flags.add(flag)
        city.reapply_radius_upgrades(self.id)


DEFAULT_TECHS: List[Tech] = [
    Tech(
        "hydroponics",
        "Hydroponic Gardens",
        {ResourceType.RESEARCH: 8, ResourceType.FLUNDS: 60},
        adoption_growth=0.05,
        description="Vertical gardens add a little produce to every meal.",
    ),
    Tech(
        "vacuumwindows",
        "Vacuum Insulated Windows",
        {ResourceType.RESEARCH: 10, ResourceType.GLASS: 10},
        adoption_growth=0.04,
        description="Quieter homes make noisy neighbourhoods more tolerable.",
    ),
    Tech(
        "smartpolicing",
        "Smart Policing",
        {ResourceType.RESEARCH: 12, ResourceType.FLUNDS: 120},
        prerequisites=("vacuumwindows",),
        adoption_growth=0.1,
        description="Police stations cover one more tile in every direction.",
    ),
    Tech(
        "labgrownmeat",
        "Lab-Grown Meat",
        {ResourceType.RESEARCH: 20, ResourceType.FLUNDS: 200},
        prerequisites=("hydroponics",),
        adoption_growth=0.05,
        description="Cultured protein without the pasture.",
    ),
]


# Achievement observers are told when the second tech is completed.
FIRST_RESEARCH_PAIR = "ResearchPair"


class TechManager:
    """Prerequisite graph of techs plus the research and adoption rules."""

    def __init__(self, techs: Optional[Iterable[Tech]] = None) -> None:
        self.techs: Dict[str, Tech] = {}
        for tech in techs if techs is not None else DEFAULT_TECHS:
            self.techs[tech.id] = tech.copy()
        self.fudge_factor = config.RESEARCH_FUDGE_FACTOR
        self.last_friend_visit_date: Optional[date] = None
        self.all_research_complete_notified = False

    # ------------------------------------------------------------------
    def get(self, tech_id: str) -> Tech:
        tech = self.techs.get(tech_id)
        if tech is None:
            raise UnknownCatalogEntryError("tech", tech_id)
        return tech

    def is_researched(self, tech_id: str) -> bool:
        tech = self.techs.get(tech_id)
        return bool(tech and tech.researched)

    is_unlocked = is_researched

    def get_adoption(self, tech_id: str) -> float:
        tech = self.techs.get(tech_id)
        if tech is None or not tech.researched:
            return 0.0
        return tech.adoption_rate

    def prerequisites_met(self, tech: Tech) -> bool:
        return all(self.is_researched(prerequisite) for prerequisite in tech.prerequisites)

    def can_research(self, tech: Tech) -> bool:
        return not tech.researched and not tech.unavailable and self.prerequisites_met(tech)

    def no_more_techs(self) -> bool:
        return all(tech.researched or tech.unavailable for tech in self.techs.values())

    def researchable_amount(self, city: "City", tech: Tech) -> float:
        return city.ledger.calculate_affordable_portion(tech.costs)

    # ------------------------------------------------------------------
    def research_tech(self, city: "City", tech: Tech | str) -> bool:
        """Spend as much of ``tech``'s cost as the city can afford.

        Returns ``False`` when nothing was spent. Partial funding is kept as a
        reduction of the remaining cost; the tech completes once the affordable
        portion reaches the fudge factor.
        """

        if isinstance(tech, str):
            tech = self.get(tech)
        if not self.can_research(tech):
            return False

        portion = self.researchable_amount(city, tech)
        if portion <= 1 - self.fudge_factor:
            return False
        spent = {resource: amount * portion for resource, amount in tech.costs.items()}
        if not city.ledger.check_and_spend_resources(spent):
            logger.warning("Tech %s was affordable but spending failed", tech.id)
            return False

        if portion >= self.fudge_factor:
            tech.researched = True
            tech.apply_effects(city)
            logger.info("Research complete: %s", tech.id)
            city.emit("tech_researched", tech=tech.id)
            if sum(1 for other in self.techs.values() if other.researched) == 2:
                city.emit("achievement", achievement=FIRST_RESEARCH_PAIR)
            if not self.all_research_complete_notified and self.no_more_techs():
                self.all_research_complete_notified = True
                city.notify(
                    "Research Overload: our researchers are out of ideas. "
                    "Leftover research points can go toward other projects."
                )
        else:
            for resource, amount in spent.items():
                tech.costs[resource] -= amount
        return True

    def update_adoption_rates(self) -> None:
        for tech in self.techs.values():
            if tech.researched and tech.adoption_rate < 1:
                tech.adoption_rate = min(1.0, tech.adoption_rate + tech.adoption_growth)

    # ------------------------------------------------------------------
    def grant_free_points(
        self,
        city: "City",
        donor_researched: Iterable[str],
        points: float,
        visit_date: date,
    ) -> Tuple[Optional[Tech], bool]:
        """Turn research points from a friend's visit into progress on one tech.

        Returns ``(tech, already_claimed_today)``.
        """

        if self.last_friend_visit_date == visit_date:
            return None, True

        donor = set(donor_researched)
        candidates = [
            tech
            for tech in self.techs.values()
            if tech.id in donor and self.can_research(tech)
        ]
        if not candidates:
            return None, False
        city.rng.shuffle(candidates)
        tech = candidates[0]

        research_cost = tech.costs.get(ResourceType.RESEARCH)
        if not research_cost:
            return None, False
        remaining = 1 - min(1.0, points / research_cost)
        for resource in list(tech.costs):
            tech.costs[resource] *= remaining
        if all(amount < 1 for amount in tech.costs.values()):
            tech.costs = {}
            self.research_tech(city, tech)
        self.last_friend_visit_date = visit_date
        return tech, False

    def random_free_research(self, city: "City", fraction_to_grant: float) -> Optional[Tech]:
        """Remove ``fraction_to_grant`` of the original research cost of a random tech."""

        candidates = [
            tech
            for tech in self.techs.values()
            if self.can_research(tech)
        ]
        if not candidates:
            return None
        city.rng.shuffle(candidates)
        tech = candidates[0]

        cost = tech.costs.get(ResourceType.RESEARCH)
        original = tech.original_costs.get(ResourceType.RESEARCH)
        if not cost or not original:
            return None
        reduced_to = (cost / original - fraction_to_grant) / cost * original
        if reduced_to < config.FREE_RESEARCH_SNAP:
            reduced_to = 0.0
        for resource in list(tech.costs):
            tech.costs[resource] *= reduced_to
        if reduced_to == 0:
            self.research_tech(city, tech)
        return tech

    # ------------------------------------------------------------------
    def snapshot(self) -> List[Dict[str, object]]:
        return [
            {
                "id": tech.id,
                "name": tech.name,
                "researched": tech.researched,
                "adoption_rate": self.get_adoption(tech.id),
                "costs": {resource.value: amount for resource, amount in tech.costs.items()},
                "available": self.can_research(tech),
            }
            for tech in self.techs.values()
        ]

    def bulk_export(self) -> List[Dict[str, object]]:
        return [
            {
                "id": tech.id,
                "adoption_rate": tech.adoption_rate,
                "adoption_growth": tech.adoption_growth,
                "costs": {resource.value: amount for resource, amount in tech.costs.items()},
                "researched": tech.researched,
                "unavailable": tech.unavailable,
            }
            for tech in self.techs.values()
        ]

    def bulk_load(self, entries: Iterable[Mapping[str, object]]) -> List[str]:
        """Restore persisted tech progress; unknown ids are returned, not raised."""

        skipped: List[str] = []
        for entry in entries:
            tech_id = str(entry.get("id", ""))
            tech = self.techs.get(tech_id)
            if tech is None:
                skipped.append(tech_id)
                continue
            tech.adoption_rate = float(entry.get("adoption_rate", tech.adoption_rate))  # type: ignore[arg-type]
            tech.adoption_growth = float(entry.get("adoption_growth", tech.adoption_growth))  # type: ignore[arg-type]
            tech.researched = bool(entry.get("researched", tech.researched))
            tech.unavailable = bool(entry.get("unavailable", tech.unavailable))
            raw_costs = entry.get("costs")
            if isinstance(raw_costs, Mapping):
                costs: Dict[ResourceType, float] = {}
                for key, value in raw_costs.items():
                    try:
                        costs[normalise_resource(key)] = float(value)
                    except KeyError:
                        logger.warning("Ignoring unknown cost %s on tech %s", key, tech_id)
                tech.costs = costs
        return skipped
