class AuditError(RuntimeError):
    """Base class for every failure that aborts an audit run."""
    pass

class ConfigError(AuditError):
    """Invalid command line / environment configuration, e.g. an empty block range."""
    pass

class NodeError(AuditError):
    """The ethereum node could not be reached or answered with an error."""
    pass

class StoreError(AuditError):
    """The order database could not be reached or a query failed."""
    pass

class MalformedDataError(AuditError):
    """A record contradicts what the settlement tables guarantee (bad hash length, broken ordering, missing fee data)."""
    pass
