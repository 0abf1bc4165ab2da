from .advisory_fetch import AdvisoryFetcher, FetchFailed, RunCancelled
from .advisory_parse import parse_advisory

__all__ = ["AdvisoryFetcher", "FetchFailed", "RunCancelled", "parse_advisory"]
