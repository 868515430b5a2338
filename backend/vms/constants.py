"""
Visit statuses, lifecycle events, roles and notification kinds.

Plain string constants: these values are persisted verbatim in the
visits/users/notifications tables and echoed in API payloads.
"""

# =============================================================================
# VISIT STATUSES
# =============================================================================

STATUS_INVITED = "INVITED"
STATUS_PENDING_DETAILS = "PENDING_DETAILS"
STATUS_PENDING_APPROVAL = "PENDING_APPROVAL"
STATUS_APPROVED = "APPROVED"
STATUS_REJECTED = "REJECTED"
STATUS_CHECKED_IN = "CHECKED_IN"
STATUS_CHECKED_OUT = "CHECKED_OUT"
STATUS_CANCELLED = "CANCELLED"

VALID_STATUSES = frozenset({
    STATUS_INVITED,
    STATUS_PENDING_DETAILS,
    STATUS_PENDING_APPROVAL,
    STATUS_APPROVED,
    STATUS_REJECTED,
    STATUS_CHECKED_IN,
    STATUS_CHECKED_OUT,
    STATUS_CANCELLED,
})

TERMINAL_STATUSES = frozenset({STATUS_REJECTED, STATUS_CHECKED_OUT, STATUS_CANCELLED})

# Statuses swept by a blacklist cascade and accepted by a manual cancel
CANCELLABLE_STATUSES = frozenset({
    STATUS_INVITED,
    STATUS_PENDING_DETAILS,
    STATUS_PENDING_APPROVAL,
    STATUS_APPROVED,
})

# =============================================================================
# LIFECYCLE EVENTS
# =============================================================================

EVENT_COMPLETE_REGISTRATION = "complete_registration"
EVENT_APPROVE = "approve"
EVENT_REJECT = "reject"
EVENT_CHECK_IN = "check_in"
EVENT_CHECK_OUT = "check_out"
EVENT_EXTEND = "extend"
EVENT_CANCEL = "cancel"
EVENT_BLACKLIST_CANCEL = "blacklist_cancel"
EVENT_UPDATE_GUESTS = "update_guests"

# =============================================================================
# ROLES
# =============================================================================

ROLE_ADMIN = "ADMIN"
ROLE_PROCESS_ADMIN = "PROCESS_ADMIN"
ROLE_SECURITY_MANAGER = "SECURITY_MANAGER"
ROLE_SECURITY_GUARD = "SECURITY_GUARD"
ROLE_HOST_EMPLOYEE = "HOST_EMPLOYEE"

VALID_ROLES = frozenset({
    ROLE_ADMIN,
    ROLE_PROCESS_ADMIN,
    ROLE_SECURITY_MANAGER,
    ROLE_SECURITY_GUARD,
    ROLE_HOST_EMPLOYEE,
})

APPROVER_ROLES = frozenset({ROLE_ADMIN, ROLE_PROCESS_ADMIN, ROLE_SECURITY_MANAGER})
GATE_ROLES = frozenset({ROLE_SECURITY_GUARD, ROLE_SECURITY_MANAGER})
CHECK_OUT_ROLES = frozenset({
    ROLE_ADMIN,
    ROLE_PROCESS_ADMIN,
    ROLE_SECURITY_MANAGER,
    ROLE_SECURITY_GUARD,
})
BLACKLIST_ROLES = frozenset({ROLE_ADMIN, ROLE_SECURITY_MANAGER})

# Roles that receive "approval required" fan-out (every approver role)
APPROVAL_NOTIFY_ROLES = (ROLE_ADMIN, ROLE_PROCESS_ADMIN, ROLE_SECURITY_MANAGER)

# Only admins decide visitor action requests
REQUEST_PROCESS_ROLES = frozenset({ROLE_ADMIN})

# =============================================================================
# VISITOR ACTION REQUESTS
# =============================================================================

REQUEST_PENDING = "PENDING"
REQUEST_APPROVED = "APPROVED"
REQUEST_REJECTED = "REJECTED"

ACTION_BLOCK = "BLOCK"            # cancel pending/future visits only
ACTION_BLACKLIST = "BLACKLIST"    # flag the visitor, then cancel

VISITOR_REQUEST_ACTIONS = frozenset({ACTION_BLOCK, ACTION_BLACKLIST})

# =============================================================================
# VISIT PURPOSES
# =============================================================================

VALID_PURPOSES = frozenset({
    "MEETING",
    "INTERVIEW",
    "DELIVERY",
    "MAINTENANCE",
    "PERSONAL",
    "OFFICIAL",
    "OTHER",
})

# =============================================================================
# NOTIFICATION KINDS
# =============================================================================

NOTIFY_VISITOR_INVITED = "VISITOR_INVITED"
NOTIFY_APPROVAL_REQUIRED = "VISIT_APPROVAL_REQUIRED"
NOTIFY_WALKIN_APPROVAL_REQUIRED = "WALKIN_APPROVAL_REQUIRED"
NOTIFY_VISIT_APPROVED = "VISIT_APPROVED"
NOTIFY_VISIT_REJECTED = "VISIT_REJECTED"
NOTIFY_VISITOR_ARRIVED = "VISITOR_ARRIVED"
NOTIFY_CHECKOUT = "VISITOR_CHECKED_OUT"
NOTIFY_VISITOR_ACTION_REQUEST = "VISITOR_ACTION_REQUEST"
NOTIFY_REQUEST_PROCESSED = "REQUEST_PROCESSED"

MAX_GUESTS = 10
