class VenueError(Exception):
    """Base class for errors raised by the venue simulator."""


class ConfigError(VenueError, ValueError):
    pass


class UnknownCompany(VenueError, KeyError):
    def __init__(self, company_id: str) -> None:
        super().__init__(company_id)
        self.company_id = company_id

    def __str__(self) -> str:
        return f'Unknown company "{self.company_id}"'


class PoolError(VenueError, ValueError):
    pass


class InvalidAmount(PoolError):
    pass


class InsufficientBalance(PoolError):
    pass


class BelowMinimumLiquidity(PoolError):
    pass
