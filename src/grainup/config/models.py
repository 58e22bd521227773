"""Configuration models describing grainup settings."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_SUPPORTED_EXTENSIONS = [".mov", ".mp4", ".mp3", ".wav", ".m4a"]
DEFAULT_COMPLETION_STATES = ["processing", "transcoding", "transcribing", "ready"]


class GrainupBaseModel(BaseModel):
    """Shared configuration for grainup Pydantic models."""

    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)


class WatchSettings(GrainupBaseModel):
    """Folder monitoring options.

    Attributes:
        folder: Directory that receives new recordings.
        processed_folder: Destination for uploaded recordings. Defaults to
            ``<folder>/Processed``.
        supported_extensions: Allow-list of file suffixes that are uploaded.
        settle_seconds: Quiet period required after the last filesystem event
            for a path before the watcher reports it.
        scan_existing: Whether files already in the folder are queued on startup.
        shutdown_grace_seconds: Time an in-flight upload may keep running after
            a shutdown request before it is abandoned.
    """

    folder: Optional[Path] = None
    processed_folder: Optional[Path] = None
    supported_extensions: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SUPPORTED_EXTENSIONS)
    )
    settle_seconds: float = 2.0
    scan_existing: bool = True
    shutdown_grace_seconds: float = 10.0

    @field_validator("supported_extensions")
    @classmethod
    def _normalize_extensions(cls, value: List[str]) -> List[str]:
        normalized: list[str] = []
        for raw in value:
            ext = str(raw).strip().lower()
            if not ext:
                continue
            if not ext.startswith("."):
                ext = f".{ext}"
            if ext not in normalized:
                normalized.append(ext)
        return normalized or list(DEFAULT_SUPPORTED_EXTENSIONS)

    def resolved_folder(self) -> Path | None:
        """Return the absolute watch folder, if configured."""
        if self.folder is None:
            return None
        return self.folder.expanduser().resolve()

    def resolved_processed_folder(self) -> Path | None:
        """Return the absolute processed folder, if a watch folder is known."""
        if self.processed_folder is not None:
            return self.processed_folder.expanduser().resolve()
        folder = self.resolved_folder()
        if folder is None:
            return None
        return folder / "Processed"


class StabilitySettings(GrainupBaseModel):
    """Policy used to decide when a recording has finished being written.

    Attributes:
        poll_interval_ms: Delay between size readings.
        required_stable_readings: Consecutive equal readings needed.
        timeout_ms: Overall limit before giving up on the file.
    """

    poll_interval_ms: int = Field(default=500, gt=0)
    required_stable_readings: int = Field(default=2, ge=1)
    timeout_ms: int = Field(default=30_000, gt=0)


class SelectorSettings(GrainupBaseModel):
    """CSS selectors and labels used by the browser transport.

    Attributes:
        sso_button_text: Text of a single-sign-on button to click before the
            credential form appears. Empty to skip.
        email_input: Selector for the account email field.
        email_next_button: Selector for the button confirming the email step.
        password_input: Selector for the password field.
        password_submit_button: Selector for the button submitting the password.
        upload_trigger: Optional selector clicked before the file input is used.
        file_input: Selector for the file input receiving the recording.
    """

    sso_button_text: str = "Sign in with Google"
    email_input: str = 'input[type="email"]'
    email_next_button: str = "#identifierNext"
    password_input: str = 'input[type="password"]'
    password_submit_button: str = "#passwordNext"
    upload_trigger: Optional[str] = None
    file_input: str = 'input[type="file"]'


class UploadSettings(GrainupBaseModel):
    """Remote upload behavior.

    Attributes:
        login_url: Page used to authenticate.
        upload_url: Page exposing the file submission control.
        headless: Whether the browser runs without a window.
        initiation_timeout_seconds: Limit for the remote service to accept a file.
        completion_timeout_seconds: Limit for the remote service to report the
            uploaded recording as being processed.
        action_timeout_seconds: Default timeout for individual page actions.
        user_agent: User agent presented by the browser.
        completion_states: Recording states that count as "processing has begun".
        login_markers: URL fragments that indicate the login flow is unfinished.
        diagnostics_dir: Directory for failure screenshots. Disabled when unset.
        selectors: Page selectors for the login and upload flows.
    """

    login_url: str = "https://grain.com/login"
    upload_url: str = "https://grain.com/app/upload"
    headless: bool = True
    initiation_timeout_seconds: float = Field(default=60.0, gt=0)
    completion_timeout_seconds: float = Field(default=1_200.0, gt=0)
    action_timeout_seconds: float = Field(default=60.0, gt=0)
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    completion_states: List[str] = Field(
        default_factory=lambda: list(DEFAULT_COMPLETION_STATES)
    )
    login_markers: List[str] = Field(default_factory=lambda: ["login", "accounts.google.com"])
    diagnostics_dir: Optional[Path] = None
    selectors: SelectorSettings = Field(default_factory=SelectorSettings)


class CredentialSettings(GrainupBaseModel):
    """Account credentials for the remote service.

    Attributes:
        email: Account email address.
        password: Account password.
    """

    email: Optional[str] = None
    password: Optional[str] = None

    @property
    def complete(self) -> bool:
        """Return whether both email and password are present."""
        return bool(self.email) and bool(self.password)


class EmailSettings(GrainupBaseModel):
    """SMTP notification settings.

    Attributes:
        enabled: Whether notification emails are sent.
        smtp_host: SMTP server host name.
        smtp_port: SMTP server port.
        starttls: Whether to upgrade the connection with STARTTLS.
        username: SMTP login user.
        password: SMTP login password.
        sender: From address. Defaults to ``username``.
        recipient: To address. Defaults to the sender.
    """

    enabled: bool = False
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    starttls: bool = True
    username: Optional[str] = None
    password: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None


class LoggingSettings(GrainupBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        file: Optional log file path.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "INFO"
    file: Optional[Path] = None
    max_size_mb: int = 10
    backup_count: int = 5


class CLIOptions(GrainupBaseModel):
    """CLI behavior defaults.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
    """

    quiet_default: bool = False


class GrainupConfig(GrainupBaseModel):
    """Top-level configuration struct for grainup."""

    watch: WatchSettings = Field(default_factory=WatchSettings)
    stability: StabilitySettings = Field(default_factory=StabilitySettings)
    upload: UploadSettings = Field(default_factory=UploadSettings)
    credentials: CredentialSettings = Field(default_factory=CredentialSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "DEFAULT_SUPPORTED_EXTENSIONS",
    "DEFAULT_COMPLETION_STATES",
    "GrainupBaseModel",
    "WatchSettings",
    "StabilitySettings",
    "SelectorSettings",
    "UploadSettings",
    "CredentialSettings",
    "EmailSettings",
    "LoggingSettings",
    "CLIOptions",
    "GrainupConfig",
]
