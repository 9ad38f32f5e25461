"""changelog-hub: one time-ordered release feed per page, aggregated from many repositories."""

__version__ = "0.1.0"
