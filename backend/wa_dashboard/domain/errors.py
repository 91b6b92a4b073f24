class DomainError(Exception):
    """A request that breaks a business rule (empty broadcast target, unknown segment, ...).

    Rendered as a 400 problem response; ``errors`` carries optional per-field messages.
    """

    status_code = 400

    def __init__(self, detail: str, *, title: str = "Domain Error", errors: list[dict] | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.title = title
        self.errors = errors or []


class EnrollmentConflictError(RuntimeError):
    """Compare-and-set on a contact's workflow fields kept losing to concurrent writers."""
