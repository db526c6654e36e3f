"""Core layer - pure computation, zero GUI dependency."""

from starfinder.core.errors import (
    AllocationFailure,
    CatalogFull,
    DuplicateStar,
    FitFailure,
    InvalidIndex,
    ScanInProgress,
    StarFinderError,
    StatisticsFailure,
)
from starfinder.core.models import (
    AppConfig,
    FindStarParams,
    FitsHeader,
    FitsImage,
    FittedStar,
    ImageStats,
    Rectangle,
    TelescopeConfig,
)
from starfinder.core.star_catalog import StarCatalog
