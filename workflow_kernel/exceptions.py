"""
Typed exception hierarchy for the workflow kernel.

Every error has a typed class (catch by type, not by message), a ``code``
class attribute (machine-readable, API-safe), and structured attributes
carrying the data a caller needs to render or log it.

    WorkflowKernelError (base)
    |
    +-- NotFoundError
    |   +-- TemplateNotFoundError
    |   +-- TemplateVersionNotFoundError
    |   +-- StepNotFoundError
    |   +-- WorkflowNotFoundError
    |
    +-- ValidationError
    |   +-- InvalidTemplateError
    |   +-- InvalidStepOrderError
    |   +-- DuplicateStepOrderError
    |   +-- InvalidThresholdError
    |   +-- EmptyAssigneeListError
    |   +-- TemplateVersionImmutableError
    |   +-- WorkflowNotInProgressError
    |   +-- DuplicateResponseError
    |
    +-- AuthorizationError
    |   +-- NotAssigneeError
    |
    +-- StaleStepError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

Handling categories:
    - NotFoundError / ValidationError -> surface, never retry.
    - AuthorizationError -> surface as "not your turn".
    - StaleStepError -> caller refetches state and decides whether to retry.
    - ConcurrencyError -> retryable (``retryable`` is True).
    - ImmutabilityError -> programming error or tampering; log loudly.
"""


class WorkflowKernelError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"
    retryable: bool = False


# Not-found exceptions


class NotFoundError(WorkflowKernelError):
    """Base exception for references to entities that do not exist."""

    code: str = "NOT_FOUND"


class TemplateNotFoundError(NotFoundError):
    """Template with given ID was not found."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class TemplateVersionNotFoundError(NotFoundError):
    """Template version with given ID was not found."""

    code: str = "TEMPLATE_VERSION_NOT_FOUND"

    def __init__(self, version_id: str):
        self.version_id = version_id
        super().__init__(f"Template version not found: {version_id}")


class StepNotFoundError(NotFoundError):
    """Template step with given ID was not found."""

    code: str = "STEP_NOT_FOUND"

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Step not found: {step_id}")


class WorkflowNotFoundError(NotFoundError):
    """Workflow instance with given ID was not found."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


# Validation exceptions


class ValidationError(WorkflowKernelError):
    """Base exception for malformed input.  Never partially applied."""

    code: str = "VALIDATION_ERROR"


class InvalidTemplateError(ValidationError):
    """Template or template version cannot be used as given."""

    code: str = "INVALID_TEMPLATE"

    def __init__(self, reason: str, entity_id: str | None = None):
        self.reason = reason
        self.entity_id = entity_id
        if entity_id:
            super().__init__(f"Invalid template {entity_id}: {reason}")
        else:
            super().__init__(f"Invalid template: {reason}")


class InvalidStepOrderError(ValidationError):
    """Step order must be a positive integer."""

    code: str = "INVALID_STEP_ORDER"

    def __init__(self, step_order: int):
        self.step_order = step_order
        super().__init__(f"Step order must be >= 1, got {step_order}")


class DuplicateStepOrderError(ValidationError):
    """A step with this order already exists in the version."""

    code: str = "DUPLICATE_STEP_ORDER"

    def __init__(self, version_id: str, step_order: int):
        self.version_id = version_id
        self.step_order = step_order
        super().__init__(
            f"Step order {step_order} already exists in version {version_id}"
        )


class InvalidThresholdError(ValidationError):
    """K_OF_N step has a missing or out-of-range threshold."""

    code: str = "INVALID_THRESHOLD"

    def __init__(self, k: int | None, reason: str, step_id: str | None = None):
        self.k = k
        self.reason = reason
        self.step_id = step_id
        super().__init__(f"Invalid K_OF_N threshold k={k}: {reason}")


class EmptyAssigneeListError(ValidationError):
    """At least one assignee is required."""

    code: str = "EMPTY_ASSIGNEE_LIST"

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"At least one assignee is required for step {step_id}")


class TemplateVersionImmutableError(ValidationError):
    """Template version is referenced by a workflow instance."""

    code: str = "TEMPLATE_VERSION_IMMUTABLE"

    def __init__(self, version_id: str):
        self.version_id = version_id
        super().__init__(
            f"Template version {version_id} is referenced by a workflow "
            "instance and cannot be changed; create a new version instead"
        )


class WorkflowNotInProgressError(ValidationError):
    """Operation requires an IN_PROGRESS workflow."""

    code: str = "WORKFLOW_NOT_IN_PROGRESS"

    def __init__(self, workflow_id: str, status: str):
        self.workflow_id = workflow_id
        self.status = status
        super().__init__(f"Workflow {workflow_id} is {status}, not IN_PROGRESS")


class DuplicateResponseError(ValidationError):
    """Responder already responded in this revision of the step."""

    code: str = "DUPLICATE_RESPONSE"

    def __init__(self, workflow_id: str, step_id: str, responder_id: str, revision: int):
        self.workflow_id = workflow_id
        self.step_id = step_id
        self.responder_id = responder_id
        self.revision = revision
        super().__init__(
            f"{responder_id} already responded to step {step_id} of workflow "
            f"{workflow_id} in revision {revision}"
        )


# Authorization exceptions


class AuthorizationError(WorkflowKernelError):
    """Base exception for identities acting outside their assignment."""

    code: str = "AUTHORIZATION_ERROR"


class NotAssigneeError(AuthorizationError):
    """Responder is not a materialized assignee for the step."""

    code: str = "NOT_ASSIGNEE"

    def __init__(self, workflow_id: str, step_id: str, responder_id: str):
        self.workflow_id = workflow_id
        self.step_id = step_id
        self.responder_id = responder_id
        super().__init__(
            f"{responder_id} is not an assignee of step {step_id} "
            f"in workflow {workflow_id}"
        )


# Position exceptions


class StaleStepError(WorkflowKernelError):
    """
    Submitted step is not the workflow's current step.

    The caller should refetch the workflow state; the kernel never retries.
    """

    code: str = "STALE_STEP"

    def __init__(
        self,
        workflow_id: str,
        submitted_step_id: str,
        current_step_id: str | None,
        current_step_order: int,
    ):
        self.workflow_id = workflow_id
        self.submitted_step_id = submitted_step_id
        self.current_step_id = current_step_id
        self.current_step_order = current_step_order
        super().__init__(
            f"Step {submitted_step_id} is not the current step of workflow "
            f"{workflow_id} (current order {current_step_order})"
        )


# Concurrency exceptions


class ConcurrencyError(WorkflowKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class ConcurrencyConflictError(ConcurrencyError):
    """
    Isolation violation detected while committing a workflow change.

    Resubmitting is safe only if the caller knows the first attempt did not
    commit; the kernel does not deduplicate resubmissions.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, workflow_id: str, reason: str):
        self.workflow_id = workflow_id
        self.reason = reason
        super().__init__(
            f"Concurrency conflict on workflow {workflow_id}: {reason}"
        )


# Immutability exceptions


class ImmutabilityError(WorkflowKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
