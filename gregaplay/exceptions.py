"""Shared exceptions for the video assembly pipeline.

Every failure a run can report is a ``PipelineError`` subclass. Components only
raise these typed errors; the orchestrator is the single place that reacts to
them (rollback + staging cleanup), and the HTTP/CLI adapters render them.

Each error carries:
    error_code: Stable machine-readable identifier
    http_status: Status code the HTTP trigger responds with
    public_detail: Caller-safe description (never contains local paths or secrets)
"""


class ConfigurationError(Exception):
    """Raised when required configuration is missing.

    This error indicates a configuration problem that prevents the gateway or
    the HTTP trigger from being built (e.g. SUPABASE_URL not set).
    """

    pass


class PipelineError(Exception):
    """Base class for every typed failure of a processing run."""

    error_code = "pipeline_error"
    http_status = 500

    @property
    def public_detail(self) -> str:
        return str(self)


class ValidationError(PipelineError):
    """Request cannot start a run; no event state is changed."""

    error_code = "validation_error"
    http_status = 400


class MissingEventIdError(ValidationError):
    error_code = "missing_event_id"

    def __init__(self) -> None:
        super().__init__("eventId is required")


class EventNotFoundError(ValidationError):
    error_code = "event_not_found"
    http_status = 404

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(f"Event {event_id} not found")


class NoClipsError(ValidationError):
    """The event has zero submitted clips, so there is nothing to assemble."""

    error_code = "no_clips"

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(f"No clips submitted for event {event_id}")


class InvalidEventStatusError(PipelineError):
    """The stored event status is empty or not one the pipeline knows.

    The claim compares against the stored value, so such an event can never be
    claimed; it is reported instead of being read as some other status.
    """

    error_code = "invalid_event_status"
    http_status = 409

    def __init__(self, event_id: str | None, value: object) -> None:
        self.event_id = event_id
        self.value = value
        super().__init__(f"Event {event_id} has unrecognized status {value!r}")


class UnvalidatedClipsError(ValidationError):
    """Some submitted clips have not been validated yet.

    Attributes:
        clip_ids: Ids of the clips that are not validated
    """

    error_code = "clips_not_validated"

    def __init__(self, event_id: str, clip_ids: list[str]) -> None:
        self.event_id = event_id
        self.clip_ids = clip_ids
        super().__init__(f"{len(clip_ids)} clip(s) of event {event_id} are not validated")


class EventAlreadyProcessingError(PipelineError):
    """The claim guard found the event already held by another run."""

    error_code = "already_processing"
    http_status = 409

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(f"Event {event_id} is already being processed")


class DownloadError(PipelineError):
    """A clip could not be fetched from the object store.

    Attributes:
        locator: Storage path of the clip that failed
        cause: Underlying error description
    """

    error_code = "download_failed"

    def __init__(self, locator: str, cause: str) -> None:
        self.locator = locator
        self.cause = cause
        super().__init__(f"Failed to download clip {locator}: {cause}")

    @property
    def public_detail(self) -> str:
        return f"Failed to download clip {self.locator}"


class EncodingError(PipelineError):
    """The media encoder exited non-zero or exceeded its time limit.

    Attributes:
        exit_code: Process exit status (None when the process was killed on timeout)
        diagnostics: Captured encoder diagnostic output
        timed_out: True if the encoder was terminated for exceeding its timeout
    """

    error_code = "encoding_failed"

    def __init__(self, exit_code: int | None, diagnostics: str, timed_out: bool = False) -> None:
        self.exit_code = exit_code
        self.diagnostics = diagnostics
        self.timed_out = timed_out
        if timed_out:
            message = "Encoder timed out"
        else:
            message = f"Encoder exited with code {exit_code}"
        super().__init__(message)

    @property
    def public_detail(self) -> str:
        # Diagnostics reference staging paths, so only the status is exposed.
        return str(self)


class UploadError(PipelineError):
    """The final artifact could not be written to the object store."""

    error_code = "upload_failed"

    def __init__(self, path: str, cause: str) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to upload artifact {path}: {cause}")

    @property
    def public_detail(self) -> str:
        return f"Failed to upload final video to {self.path}"


class PersistenceError(PipelineError):
    """An event row read or write failed.

    When raised by the finalize step, ``artifact_published`` is True: the video
    is live at its deterministic path but the event is not marked done. A plain
    re-run repairs this.
    """

    error_code = "persistence_failed"

    def __init__(self, operation: str, cause: str, artifact_published: bool = False) -> None:
        self.operation = operation
        self.cause = cause
        self.artifact_published = artifact_published
        super().__init__(f"Event {operation} failed: {cause}")

    @property
    def public_detail(self) -> str:
        if self.artifact_published:
            return "Final video was published but the event could not be updated; retry processing"
        return f"Event {self.operation} failed"
