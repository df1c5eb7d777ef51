"""Error taxonomy for the response pipeline."""


class ResQError(Exception):
    """Base class for pipeline errors."""


class IntelligenceUnavailable(ResQError):
    """The intelligence capability failed to answer (transport, parse or validation).

    Recovered locally by the pipeline with fallback values.
    """


class UnknownProtocol(ResQError, LookupError):
    """A protocol name outside the catalog was requested."""

    def __init__(self, name):
        self.name = name
        super().__init__(f"Unknown protocol: {name}")


class InvalidStageTransition(ResQError):
    """A stage was asked to move backwards or skip RUNNING."""
