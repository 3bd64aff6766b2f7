from typing import List


class AggregatorError(RuntimeError):
    pass


class ConfigError(AggregatorError):
    pass


class NetworkError(AggregatorError):
    pass


class LinkDiscoveryError(NetworkError):
    pass


class FilesystemError(AggregatorError):
    pass


class ArchiveFormatError(AggregatorError):
    pass


class ParseFormatError(AggregatorError):
    pass


class UnsupportedRecordType(ParseFormatError):
    pass


class StoreProtocolError(AggregatorError):
    pass


class UnitFailed(AggregatorError):
    def __init__(self, link: str, original: BaseException):
        super().__init__(f"Unit '{link}' failed: {original}")
        self.link = link
        self.original = original


class PipelineFailed(AggregatorError):
    """Raised once all units have finished and at least one of them failed.

    ``errors`` keeps every failure in completion order; the message names the last one.
    """

    def __init__(self, errors: List[UnitFailed]):
        last = errors[-1] if errors else None
        super().__init__(f"{len(errors)} unit(s) failed, last error: {last}")
        self.errors = list(errors)
        self.last = last
