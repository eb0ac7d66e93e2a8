"""Owner/operator access control for privileged lending pool operations"""

from .errors import AuthorizationError


class AccessControl:
    """
    Distinguishes the owner, an optional operator, and public callers.

    The owner controls risk parameters and roles; the operator may only
    publish prices and APR updates.
    """

    def __init__(self, owner, operator=None):
        if not owner:
            raise AuthorizationError("Owner must be set")
        self.owner = owner
        self.operator = operator

    def is_owner(self, caller):
        return caller == self.owner

    def is_operator(self, caller):
        return self.operator is not None and caller == self.operator

    def require_owner(self, caller):
        if not self.is_owner(caller):
            raise AuthorizationError(f"Caller {caller} is not owner")

    def require_owner_or_operator(self, caller):
        if not (self.is_owner(caller) or self.is_operator(caller)):
            raise AuthorizationError(f"Caller {caller} is not owner or operator")

    def set_operator(self, caller, operator):
        """Replaces the operator. Passing None removes it."""
        self.require_owner(caller)
        self.operator = operator
