"""
Astrophysical structure on top of the derived fields.

- formation: per-cell STAR / BLACK_HOLE / GALAXY_HALO tagging
- agents: persistent galaxy identities with change reports
"""

from .formation import (
    Archetype, FormationParams, Classification, FormationClassifier,
    classify, connected_regions,
)
from .agents import (
    AgentKind, AgentParams, AgentReport, AgentSummary, AgentTracker,
    GalaxyAgent, HaloMatch, MergerEvent, ReportLog, match_halos, halo_geometry,
)

__all__ = [
    "Archetype",
    "FormationParams",
    "Classification",
    "FormationClassifier",
    "classify",
    "connected_regions",
    "AgentKind",
    "AgentParams",
    "AgentReport",
    "AgentSummary",
    "AgentTracker",
    "GalaxyAgent",
    "HaloMatch",
    "MergerEvent",
    "ReportLog",
    "match_halos",
    "halo_geometry",
]
