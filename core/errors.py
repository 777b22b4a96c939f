# Error taxonomy shared by the catalog, the order book and the storage layer.
# Storage backends translate their driver exceptions into these classes so
# callers never have to know which database sits underneath.


class CatalogError(Exception):
    """Base class for every error raised by the price book core."""


class ValidationFailure(CatalogError):
    """Input rejected before anything was sent to storage.

    Raised for an empty product name, an unparsable price on a required
    field, an empty cart, and similar local checks.
    """


class NotFound(CatalogError):
    """A row (or a whole table) the operation needs does not exist."""


class TableMissing(NotFound):
    """The backing table itself is missing.

    Callers treat this differently from a plain NotFound: it means the
    database has never been set up and the repair flow should run.
    """

    def __init__(self, table: str, message: str = None):
        self.table = table
        super().__init__(message or f"Table '{table}' does not exist")


class ConflictOrConstraint(CatalogError):
    """The store refused the write because of a key or referential rule."""


class TransientNetwork(CatalogError):
    """Timeout or connectivity problem. Reads can be retried, writes are not."""
