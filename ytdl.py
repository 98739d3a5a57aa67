"""
Interactive yt-dlp + ffmpeg front end with colorized UI.

Features:
- Video mode: best quality MP4 with embedded thumbnail, chapters and subtitles.
- Audio + single frame mode: one small MP4 holding the audio track, a still
  frame, subtitles, chapter markers and cover art.
- Automatic retry escalation: anonymous, then cookies.txt, then cookies with
  mobile client emulation.
- Self-bootstrapping: installs ffmpeg through the host package manager and
  fetches the standalone yt-dlp executable into the tool home.

Note: Requires ffmpeg. Colorized output uses colorama.
"""

from __future__ import annotations

import contextlib
import enum
import json
import math
import os
import re
import shutil
import stat
import subprocess
import sys
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path

import requests
from colorama import Fore, Style, init as colorama_init

try:
	from yt_dlp.utils import format_bytes, formatSeconds, shell_quote
except Exception as e:  # pragma: no cover
	print("[ERROR] yt-dlp is not installed. Please install it first:")
	print("  pip install -U yt-dlp")
	sys.exit(1)


APP_NAME = "ytdl"
CONFIG_FILENAME = "config.json"
COOKIES_FILENAME = "cookies.txt"
YTDLP_RELEASE_URL = "https://github.com/yt-dlp/yt-dlp/releases/latest/download/"
YTDLP_RELEASES_PAGE = "https://github.com/yt-dlp/yt-dlp/releases"

# Mobile/TV players are often less restricted than the default web client
MOBILE_CLIENTS = "youtube:player_client=android,ios,tv"

RESILIENCE_ARGS = [
	"--retries", "10",
	"--fragment-retries", "999",
	"--file-access-retries", "10",
	"--extractor-retries", "5",
]

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000
MAX_COMMENT_LENGTH = 500

PLACEHOLDER_SIZE = "1920x1080"
ALTERNATE_THUMBNAIL_EXTS = ("webp", "png")
# libx264 with yuv420p rejects odd frame dimensions
EVEN_SCALE = "scale=trunc(iw/2)*2:trunc(ih/2)*2"

DEFAULT_ALIAS = "ytdl"
ALIAS_MARKER = "# ytdl alias"
ALIAS_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")

DOWNLOAD_TIPS = (
	"Troubleshooting tips:\n"
	"  1. Make sure yt-dlp is up to date (option U)\n"
	"  2. Export fresh cookies from your browser into cookies.txt\n"
	"  3. Try again later (YouTube may be rate-limiting)"
)


def get_app_home() -> Path:
	"""Get the tool home (config, yt-dlp executable, cookies) in a platform-appropriate directory."""
	override = os.environ.get("YTDL_HOME")
	if override:
		home = Path(override).expanduser()
	elif os.name == 'nt':  # Windows
		appdata = Path(os.environ.get('APPDATA', Path.home() / 'AppData' / 'Roaming'))
		home = appdata / APP_NAME
	else:  # Linux/macOS
		# Use XDG Base Directory specification
		xdg_data_home = os.environ.get('XDG_DATA_HOME', Path.home() / '.local' / 'share')
		home = Path(xdg_data_home) / APP_NAME

	home.mkdir(parents=True, exist_ok=True)
	return home


def ytdlp_executable(home: Path) -> Path:
	return home / ("yt-dlp.exe" if os.name == 'nt' else "yt-dlp")


def tool_command() -> str:
	"""Command line that launches this tool, for aliases and desktop entries."""
	installed = shutil.which(APP_NAME)
	if installed:
		return installed
	return f'"{sys.executable}" "{Path(__file__).resolve()}"'


#-------------------------------------------------------------------------------
# Console
#-------------------------------------------------------------------------------

class Console:
	"""Colorized status output. Everything goes to one stream, stderr by default,
	so it never mixes with captured engine output."""

	def __init__(self, stream=None, color: bool = True):
		self.stream = stream if stream is not None else sys.stderr
		self.color = color

	def paint(self, style: str, text: str) -> str:
		if not self.color:
			return text
		return f"{style}{text}{Style.RESET_ALL}"

	def line(self, text: str = "") -> None:
		print(text, file=self.stream, flush=True)

	def header(self, text: str) -> None:
		self.line()
		self.line(self.paint(Style.BRIGHT + Fore.CYAN, f"═══ {text} ═══"))
		self.line()

	def info(self, text: str) -> None:
		self.line(self.paint(Fore.BLUE, f"→ {text}"))

	def success(self, text: str) -> None:
		self.line(self.paint(Fore.GREEN, f"✓ {text}"))

	def warning(self, text: str) -> None:
		self.line(self.paint(Fore.YELLOW + Style.BRIGHT, f"! {text}"))

	def error(self, text: str) -> None:
		self.line(self.paint(Fore.RED + Style.BRIGHT, f"✗ {text}"))

	def dim(self, text: str) -> None:
		self.line(self.paint(Style.DIM, f"  {text}"))

	def report(self, exc: YtdlError) -> None:
		"""Show a failure together with its next action."""
		self.error(str(exc))
		if exc.hint:
			self.line()
			for hint_line in exc.hint.splitlines():
				self.line(f"  {hint_line}")

	def prompt(self, question: str, default: str | None = None) -> str:
		if default:
			q = f"{self.paint(Fore.MAGENTA + Style.BRIGHT, '?')} {question} {self.paint(Style.DIM, f'[{default}]')}: "
		else:
			q = f"{self.paint(Fore.MAGENTA + Style.BRIGHT, '?')} {question}: "
		ans = input(q).strip()
		return ans or (default or "")

	def confirm(self, question: str, default: bool = True) -> bool:
		ans = self.prompt(f"{question} {'[Y/n]' if default else '[y/N]'}").lower()
		if not ans:
			return default
		return ans.startswith("y")


#-------------------------------------------------------------------------------
# Errors
#-------------------------------------------------------------------------------

class YtdlError(Exception):
	"""Operator-facing failure. ``hint`` tells the operator what to do next."""

	hint = ""

	def __init__(self, message: str, hint: str | None = None):
		super().__init__(message)
		if hint is not None:
			self.hint = hint


class ConfigError(YtdlError):
	hint = "Check that the directory exists and is writable, then run setup again (option S)."


class DependencyMissingError(YtdlError):

	def __init__(self, missing: list[str], hint: str | None = None):
		super().__init__(f"Cannot continue without: {' '.join(missing)}", hint)
		self.missing = list(missing)


class ToolBootstrapError(YtdlError):
	hint = f"You can manually download it from:\n  {YTDLP_RELEASES_PAGE}"


class DownloadFailedError(YtdlError):
	hint = DOWNLOAD_TIPS

	def __init__(self, url: str, attempts: list[DownloadAttempt], hint: str | None = None):
		names = ", ".join(a.strategy.name for a in attempts) or "none"
		super().__init__(f"Download failed after {len(attempts)} attempt(s) ({names}): {url}", hint)
		self.url = url
		self.attempts = list(attempts)


class AssemblyError(YtdlError):
	hint = DOWNLOAD_TIPS


class MetadataProbeError(AssemblyError):
	pass


#-------------------------------------------------------------------------------
# Subprocess outcomes
#-------------------------------------------------------------------------------

class FailureKind(enum.Enum):
	NONE = "none"
	EXIT_STATUS = "exit-status"
	NOT_LAUNCHED = "not-launched"


@dataclass(frozen=True)
class ProcessOutcome:
	"""Result of one external tool invocation."""

	args: tuple[str, ...]
	returncode: int
	stdout: str | None = None
	stderr: str | None = None
	failure: FailureKind = FailureKind.NONE

	@property
	def ok(self) -> bool:
		return self.failure is FailureKind.NONE


def run_process(args, capture: bool = False, console: Console | None = None) -> ProcessOutcome:
	"""Run a command to completion. Never raises for a failing or missing program."""
	args = [str(a) for a in args]
	if console is not None and os.environ.get("YTDL_DEBUG"):
		console.dim(f"$ {shell_quote(args)}")
	try:
		completed = subprocess.run(
			args,
			capture_output=capture,
			text=True,
			encoding="utf-8",
			errors="replace",
		)
	except OSError as exc:
		return ProcessOutcome(tuple(args), 127, stderr=str(exc), failure=FailureKind.NOT_LAUNCHED)

	failure = FailureKind.NONE if completed.returncode == 0 else FailureKind.EXIT_STATUS
	return ProcessOutcome(tuple(args), completed.returncode, completed.stdout, completed.stderr, failure)


#-------------------------------------------------------------------------------
# Configuration
#-------------------------------------------------------------------------------

@dataclass
class Config:
	download_dir: Path | None = None
	alias_name: str | None = None

	@classmethod
	def from_dict(cls, data: dict) -> Config:
		"""Build a config from the stored document, defaulting blank or missing values."""
		def text(key: str) -> str | None:
			value = data.get(key)
			if value is None:
				return None
			value = str(value).strip()
			return value or None

		download_dir = text("DownloadDir")
		return cls(
			download_dir=Path(download_dir).expanduser() if download_dir else None,
			alias_name=text("AliasName"),
		)

	def to_dict(self) -> dict:
		data = {}
		if self.download_dir is not None:
			data["DownloadDir"] = str(self.download_dir)
		if self.alias_name:
			data["AliasName"] = self.alias_name
		return data


class ConfigStore:
	"""Flat JSON key-value document, read lazily and written atomically.

	Unknown keys are kept as they are when the document is rewritten.
	"""

	def __init__(self, path: Path):
		self.path = Path(path)
		self._raw: dict | None = None

	def _read(self) -> dict:
		if self._raw is None:
			try:
				data = json.loads(self.path.read_text(encoding="utf-8"))
			except (OSError, ValueError):
				data = {}
			self._raw = data if isinstance(data, dict) else {}
		return self._raw

	def load(self) -> Config:
		return Config.from_dict(self._read())

	def reload(self) -> Config:
		"""Drop the cached document and read the file again."""
		self._raw = None
		return self.load()

	def get(self, key: str) -> str | None:
		value = self._read().get(key)
		return None if value is None else str(value)

	def set(self, key: str, value: str) -> None:
		data = dict(self._read())
		data[key] = value
		self._write(data)

	def save(self, config: Config) -> None:
		data = {k: v for k, v in self._read().items() if k not in ("DownloadDir", "AliasName")}
		data.update(config.to_dict())
		self._write(data)

	def _write(self, data: dict) -> None:
		try:
			self.path.parent.mkdir(parents=True, exist_ok=True)
			fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
		except OSError as exc:
			raise ConfigError(f"Could not save configuration to {self.path}: {exc}") from exc

		try:
			with os.fdopen(fd, "w", encoding="utf-8") as f:
				json.dump(data, f, indent=2, ensure_ascii=False)
			os.replace(tmp_name, self.path)
		except BaseException as exc:
			with contextlib.suppress(OSError):
				os.unlink(tmp_name)
			if isinstance(exc, OSError):
				raise ConfigError(f"Could not save configuration to {self.path}: {exc}") from exc
			raise
		self._raw = data


#-------------------------------------------------------------------------------
# External tools
#-------------------------------------------------------------------------------

@dataclass(frozen=True)
class Strategy:
	"""Credentials and client identity used for one engine invocation."""

	name: str
	cookies: Path | None = None
	mobile_clients: bool = False

	def args(self) -> list[str]:
		args: list[str] = []
		if self.cookies is not None:
			args += ["--cookies", str(self.cookies)]
		if self.mobile_clients:
			args += ["--extractor-args", MOBILE_CLIENTS]
		return args


ANONYMOUS = Strategy("none")
MOBILE = Strategy("mobile", mobile_clients=True)


class YtDlp:
	"""Runs the standalone yt-dlp executable."""

	def __init__(self, executable: Path, console: Console):
		self.executable = Path(executable)
		self.console = console

	def run(self, args: list[str], capture: bool = False) -> ProcessOutcome:
		return run_process([self.executable, *args], capture=capture, console=self.console)

	def probe(self, url: str, strategy: Strategy) -> dict | None:
		"""Fetch the JSON description of a single video, or None on any failure."""
		outcome = self.run([*strategy.args(), "--no-playlist", "-j", url], capture=True)
		if not outcome.ok or not outcome.stdout:
			return None
		for raw in outcome.stdout.splitlines():
			raw = raw.strip()
			if not raw:
				continue
			try:
				info = json.loads(raw)
			except ValueError:
				return None
			return info if isinstance(info, dict) else None
		return None


class Ffmpeg:
	def __init__(self, console: Console, executable: str = "ffmpeg"):
		self.executable = executable
		self.console = console

	def run(self, args: list[str], capture: bool = True) -> ProcessOutcome:
		return run_process([self.executable, "-y", "-hide_banner", *args], capture=capture, console=self.console)


@dataclass
class AppContext:
	"""Resolved paths and I/O handles shared by every component."""

	home: Path
	console: Console
	store: ConfigStore
	ytdlp: YtDlp
	ffmpeg: Ffmpeg

	@classmethod
	def create(cls, console: Console | None = None, home: Path | None = None) -> AppContext:
		console = console or Console()
		home = Path(home) if home is not None else get_app_home()
		return cls(
			home=home,
			console=console,
			store=ConfigStore(home / CONFIG_FILENAME),
			ytdlp=YtDlp(ytdlp_executable(home), console),
			ffmpeg=Ffmpeg(console),
		)

	@property
	def download_dir(self) -> Path | None:
		return self.store.load().download_dir

	def cookie_candidates(self) -> list[Path]:
		dirs = [self.home]
		if self.download_dir is not None:
			dirs.append(self.download_dir)
		return dirs

	def find_cookies(self) -> Path | None:
		"""First cookies.txt found in the tool home, then the download directory."""
		for directory in self.cookie_candidates():
			candidate = directory / COOKIES_FILENAME
			if candidate.is_file():
				return candidate
		return None


#-------------------------------------------------------------------------------
# Dependency management
#-------------------------------------------------------------------------------

REQUIRED_TOOLS = ("ffmpeg",)
OPTIONAL_TOOLS = ("atomicparsley",)

# executable name(s) to look for, per abstract tool
TOOL_EXECUTABLES = {
	"atomicparsley": ("atomicparsley", "AtomicParsley"),
}

# package name overrides, per abstract tool and package manager
PACKAGE_NAMES = {
	"atomicparsley": {"dnf": "AtomicParsley", "zypper": "AtomicParsley"},
}

PACKAGE_MANAGERS = (
	("pacman", "pacman"),
	("apt-get", "apt"),
	("dnf", "dnf"),
	("zypper", "zypper"),
	("apk", "apk"),
	("brew", "brew"),
)


def _sudo() -> list[str]:
	if hasattr(os, "geteuid") and os.geteuid() == 0:
		return []
	return ["sudo"]


class DependencyResolver:
	"""Finds host tools and installs missing ones through the host package manager."""

	def __init__(self, ctx: AppContext):
		self.ctx = ctx
		self.console = ctx.console

	def is_available(self, tool: str) -> bool:
		return any(shutil.which(exe) for exe in TOOL_EXECUTABLES.get(tool, (tool,)))

	def missing(self, tools) -> list[str]:
		return [tool for tool in tools if not self.is_available(tool)]

	def detect_package_manager(self) -> str:
		for command, manager in PACKAGE_MANAGERS:
			if shutil.which(command):
				return manager
		return "unknown"

	def package_names(self, tools, manager: str) -> list[str]:
		return [PACKAGE_NAMES.get(tool, {}).get(manager, tool) for tool in tools]

	def install_commands(self, packages: list[str], manager: str) -> list[list[str]]:
		sudo = _sudo()
		if manager == "pacman":
			return [sudo + ["pacman", "-Sy", "--noconfirm", *packages]]
		if manager == "apt":
			return [sudo + ["apt-get", "update"], sudo + ["apt-get", "install", "-y", *packages]]
		if manager == "dnf":
			return [sudo + ["dnf", "install", "-y", *packages]]
		if manager == "zypper":
			return [sudo + ["zypper", "install", "-y", *packages]]
		if manager == "apk":
			return [sudo + ["apk", "add", *packages]]
		if manager == "brew":
			return [["brew", "install", *packages]]
		return []

	def install(self, tools: list[str]) -> bool:
		manager = self.detect_package_manager()
		self.console.info(f"Using package manager: {manager}")
		commands = self.install_commands(self.package_names(tools, manager), manager)
		if not commands:
			self.console.error("No supported package manager found")
			return False
		for command in commands:
			if not run_process(command, console=self.console).ok:
				self.console.error(f"Command failed: {' '.join(command)}")
				return False
		return True

	def manual_instructions(self, tools: list[str]) -> str:
		lines = ["Install manually using your package manager:"]
		for label, manager, command in (
			("Debian/Ubuntu:", "apt", "sudo apt install"),
			("Fedora:", "dnf", "sudo dnf install"),
			("Arch:", "pacman", "sudo pacman -S"),
			("macOS:", "brew", "brew install"),
		):
			packages = " ".join(self.package_names(tools, manager))
			lines.append(f"  {label:<14} {command} {packages}")
		return "\n".join(lines)

	def check(self) -> None:
		"""Report host tools; offer to install missing required ones."""
		self.console.header("CHECKING DEPENDENCIES")

		for tool in REQUIRED_TOOLS:
			if self.is_available(tool):
				self.console.success(f"{tool} found")

		missing = self.missing(REQUIRED_TOOLS)
		if missing:
			self.console.warning(f"Missing required dependencies: {' '.join(missing)}")
			if self.console.confirm("Attempt automatic installation?"):
				self.install(missing)
				missing = self.missing(REQUIRED_TOOLS)
			if missing:
				raise DependencyMissingError(missing, hint=self.manual_instructions(missing))

		optional_missing = self.missing(OPTIONAL_TOOLS)
		if optional_missing:
			self.console.warning(f"Optional (for better thumbnails): {' '.join(optional_missing)}")

		self.console.success("All required dependencies satisfied")


class YtDlpManager:
	"""Keeps the standalone yt-dlp executable present and current."""

	def __init__(self, ctx: AppContext):
		self.ctx = ctx
		self.console = ctx.console

	@property
	def executable(self) -> Path:
		return self.ctx.ytdlp.executable

	@property
	def download_url(self) -> str:
		return YTDLP_RELEASE_URL + self.executable.name

	def is_installed(self) -> bool:
		return self.executable.is_file()

	def ensure(self) -> Path:
		if self.is_installed():
			return self.executable

		self.console.header("INSTALLING YT-DLP")
		self.console.info("Downloading latest yt-dlp...")
		self.executable.parent.mkdir(parents=True, exist_ok=True)
		partial = self.executable.with_name(self.executable.name + ".part")
		try:
			with requests.get(self.download_url, stream=True, timeout=30) as resp:
				resp.raise_for_status()
				with open(partial, "wb") as f:
					for chunk in resp.iter_content(chunk_size=1 << 16):
						if chunk:
							f.write(chunk)
			partial.chmod(partial.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
			os.replace(partial, self.executable)
		except (requests.RequestException, OSError) as exc:
			with contextlib.suppress(OSError):
				partial.unlink()
			raise ToolBootstrapError(f"Failed to download yt-dlp: {exc}") from exc

		self.console.success("yt-dlp installed successfully")
		version = self.version()
		if version:
			self.console.dim(f"version {version}")
		return self.executable

	def update(self) -> bool:
		"""Best-effort self-update; a failure only warns."""
		self.console.info("Checking for yt-dlp updates...")
		outcome = self.ctx.ytdlp.run(["-U"])
		if not outcome.ok:
			self.console.warning("yt-dlp self-update failed, continuing with the installed version")
		self.console.line()
		return outcome.ok

	def version(self) -> str | None:
		outcome = self.ctx.ytdlp.run(["--version"], capture=True)
		if outcome.ok and outcome.stdout:
			return outcome.stdout.strip()
		return None


#-------------------------------------------------------------------------------
# Downloads
#-------------------------------------------------------------------------------

class Mode(enum.Enum):
	VIDEO = "video"
	AUDIO = "audio"


MODE_ARGS = {
	Mode.VIDEO: [
		"-f", "bestvideo*+bestaudio/best",
		"-S", "res,ext:mp4:m4a",
		"--merge-output-format", "mp4",
		"--embed-thumbnail",
		"--embed-chapters",
		"--embed-subs",
		"--sub-langs", "en",
		"--write-auto-subs",
		"--abort-on-unavailable-fragment",
	],
	Mode.AUDIO: [
		"-f", "bestaudio*/best",
		"-S", "ext:m4a:mp3:ogg",
		"--embed-thumbnail",
		"--embed-metadata",
		"--embed-chapters",
		"--write-subs",
		"--write-auto-subs",
		"--sub-langs", "en",
		"--convert-subs", "srt",
	],
}


@dataclass(frozen=True)
class DownloadAttempt:
	mode: Mode
	url: str
	strategy: Strategy
	output_template: str | None = None
	extra_args: tuple[str, ...] = ()
	outcome: ProcessOutcome | None = None

	def command_args(self, default_dir: Path | None = None) -> list[str]:
		args = self.strategy.args() + RESILIENCE_ARGS + MODE_ARGS[self.mode] + list(self.extra_args)
		if self.output_template:
			args += ["-o", self.output_template]
		elif default_dir is not None:
			args += ["-P", str(default_dir)]
		args.append(self.url)
		return args


class FallbackDownloader:
	"""Runs a download, escalating credentials until one strategy succeeds.

	Order: anonymous, cookies, cookies with mobile client emulation. The cookie
	strategies only exist when a cookies.txt is found after the first failure.
	"""

	def __init__(self, ctx: AppContext):
		self.ctx = ctx
		self.console = ctx.console

	def plan(self):
		yield ANONYMOUS
		cookies = self.ctx.find_cookies()
		if cookies is None:
			self.console.dim(f"No {COOKIES_FILENAME} found, skipping credentialed retries")
			return
		yield Strategy("cookies", cookies=cookies)
		yield Strategy("cookies+mobile", cookies=cookies, mobile_clients=True)

	def download(self, mode: Mode, url: str, output_template: str | None = None, extra_args=()) -> DownloadAttempt:
		default_dir = None if output_template else self.ctx.download_dir
		attempts: list[DownloadAttempt] = []

		for strategy in self.plan():
			if not attempts:
				self.console.info("Attempting download...")
			elif strategy.mobile_clients:
				self.console.line()
				self.console.warning("Retrying with cookies and mobile clients...")
			else:
				self.console.line()
				self.console.warning("First attempt failed. Retrying with cookies...")
				self.console.warning(f"Using cookies: {strategy.cookies}")

			attempt = DownloadAttempt(mode, url, strategy, output_template, tuple(extra_args))
			outcome = self.ctx.ytdlp.run(attempt.command_args(default_dir))
			attempt = replace(attempt, outcome=outcome)
			attempts.append(attempt)

			if outcome.ok:
				return attempt
			if outcome.failure is FailureKind.NOT_LAUNCHED:
				raise DownloadFailedError(
					url, attempts,
					hint=f"yt-dlp could not be started ({outcome.stderr}). Reinstall it with option U.",
				)

		raise DownloadFailedError(url, attempts)


def download_video(ctx: AppContext, url: str) -> DownloadAttempt:
	ctx.console.header("DOWNLOADING VIDEO")
	attempt = FallbackDownloader(ctx).download(Mode.VIDEO, url)
	ctx.console.line()
	ctx.console.success("Download complete!")
	if ctx.download_dir is not None:
		ctx.console.dim(f"Saved to: {ctx.download_dir}")
	return attempt


#-------------------------------------------------------------------------------
# Audio + single frame assembly
#-------------------------------------------------------------------------------

def sanitize_filename(title: str) -> str:
	"""Keep ASCII letters, digits, space, dot, underscore and hyphen; spaces become underscores."""
	clean = re.sub(r"[^A-Za-z0-9 ._-]", "", title).replace(" ", "_")
	clean = clean[:MAX_TITLE_LENGTH]
	return clean if clean.strip(".") else "video"


def unique_output_path(directory: Path, stem: str, ext: str = ".mp4") -> Path:
	"""First free name among stem.ext, stem_1.ext, stem_2.ext, ..."""
	candidate = directory / f"{stem}{ext}"
	counter = 1
	while candidate.exists():
		candidate = directory / f"{stem}_{counter}{ext}"
		counter += 1
	return candidate


@dataclass(frozen=True)
class Chapter:
	start_time: float
	end_time: float
	title: str = "Chapter"


@dataclass(frozen=True)
class VideoMetadata:
	title: str = "video"
	duration: float = 0
	uploader: str = ""
	upload_date: str = ""
	description: str = ""
	chapters: tuple[Chapter, ...] = ()

	@classmethod
	def from_info(cls, info: dict) -> VideoMetadata:
		chapters = []
		for entry in info.get("chapters") or []:
			if not isinstance(entry, dict):
				continue
			try:
				start = float(entry.get("start_time") or 0)
				end = float(entry["end_time"]) if entry.get("end_time") is not None else start
			except (TypeError, ValueError):
				continue
			chapters.append(Chapter(start, end, str(entry.get("title") or "Chapter")))

		try:
			duration = float(info.get("duration") or 0)
		except (TypeError, ValueError):
			duration = 0

		return cls(
			title=str(info.get("title") or "video"),
			duration=duration,
			uploader=str(info.get("uploader") or ""),
			upload_date=str(info.get("upload_date") or ""),
			description=str(info.get("description") or "")[:MAX_DESCRIPTION_LENGTH],
			chapters=tuple(chapters),
		)


@dataclass(frozen=True)
class WorkingArtifacts:
	audio: Path
	thumbnail: Path
	subtitles: Path | None = None
	chapters: Path | None = None


def _ffmeta_escape(value: str) -> str:
	return re.sub(r"([=;#\\\n])", r"\\\1", value)


def write_chapter_metadata(path: Path, metadata: VideoMetadata) -> Path | None:
	"""Write an ffmpeg metadata file with one [CHAPTER] block per chapter.

	Returns None, and writes nothing, when there are no chapters.
	"""
	if not metadata.chapters:
		return None

	lines = [";FFMETADATA1", f"title={_ffmeta_escape(metadata.title)}"]
	if metadata.uploader:
		lines.append(f"artist={_ffmeta_escape(metadata.uploader)}")
	lines.append("")
	for chapter in metadata.chapters:
		lines += [
			"[CHAPTER]",
			"TIMEBASE=1/1000",
			f"START={math.floor(chapter.start_time * 1000)}",
			f"END={math.floor(chapter.end_time * 1000)}",
			f"title={_ffmeta_escape(chapter.title)}",
			"",
		]
	path.write_text("\n".join(lines), encoding="utf-8")
	return path


def placeholder_args(output: Path) -> list[str]:
	return ["-f", "lavfi", "-i", f"color=c=black:s={PLACEHOLDER_SIZE}:d=1", "-frames:v", "1", "-q:v", "2", str(output)]


def build_mux_args(artifacts: WorkingArtifacts, metadata: VideoMetadata, output: Path) -> list[str]:
	"""ffmpeg arguments for the still frame + audio (+ chapters, + subtitles) mux."""
	inputs = ["-loop", "1", "-framerate", "1", "-i", str(artifacts.thumbnail), "-i", str(artifacts.audio)]
	maps = ["-map", "0:v", "-map", "1:a"]
	codecs: list[str] = []
	index = 2

	if artifacts.chapters is not None:
		inputs += ["-i", str(artifacts.chapters)]
		maps += ["-map_metadata", str(index)]
		index += 1

	if artifacts.subtitles is not None:
		inputs += ["-i", str(artifacts.subtitles)]
		maps += ["-map", f"{index}:s?"]
		codecs += ["-c:s", "mov_text"]
		index += 1

	codecs += [
		"-c:v", "libx264",
		"-tune", "stillimage",
		"-crf", "51",
		"-preset", "ultrafast",
		"-pix_fmt", "yuv420p",
		"-vf", EVEN_SCALE,
		"-c:a", "aac",
		"-b:a", "192k",
	]

	tags = ["-metadata", f"title={metadata.title}"]
	if metadata.uploader:
		tags += ["-metadata", f"artist={metadata.uploader}"]
	if metadata.upload_date:
		tags += ["-metadata", f"date={metadata.upload_date}"]
	if metadata.description:
		tags += ["-metadata", f"comment={metadata.description[:MAX_COMMENT_LENGTH]}"]

	return [
		*inputs, *maps, *codecs, *tags,
		"-shortest",
		"-movflags", "+faststart",
		"-loglevel", "warning",
		"-stats",
		str(output),
	]


def build_cover_args(source: Path, thumbnail: Path, output: Path) -> list[str]:
	return [
		"-i", str(source),
		"-i", str(thumbnail),
		"-map", "0", "-map", "1",
		"-c", "copy",
		"-disposition:v:0", "default",
		"-disposition:v:1", "attached_pic",
		"-loglevel", "warning",
		str(output),
	]


class FrameAssembler:
	"""Builds one MP4 from the audio track and a single still frame.

	Everything is staged in a private working directory that is removed when
	the run ends, whichever stage fails. Metadata and audio are required; the
	thumbnail falls back to a placeholder; subtitles, chapters and cover art
	are optional.
	"""

	def __init__(self, ctx: AppContext, downloader: FallbackDownloader | None = None):
		self.ctx = ctx
		self.console = ctx.console
		self.downloader = downloader or FallbackDownloader(ctx)

	def assemble(self, url: str) -> Path:
		self.console.header("AUDIO + SINGLE FRAME VIDEO")
		self.console.info("This mode saves space by using one frame for the entire video")
		self.console.line()

		download_dir = self.ctx.download_dir
		if download_dir is None:
			raise AssemblyError("No download directory configured", hint="Run setup first (option S).")

		with tempfile.TemporaryDirectory(prefix="ytdl_") as tmp:
			work = Path(tmp)
			self.console.info(f"Working directory: {work}")

			metadata, strategy = self.probe(url)
			audio = self.fetch_audio(url, work)
			thumbnail = self.fetch_thumbnail(url, work, strategy)
			subtitles = self.fetch_subtitles(url, work, strategy)
			chapters = self.write_chapters(work, metadata)

			artifacts = WorkingArtifacts(audio, thumbnail, subtitles, chapters)
			assembled = self.mux(artifacts, metadata, work / "assembled.mp4")
			self.embed_cover(assembled, thumbnail, work / "final.mp4")

			try:
				download_dir.mkdir(parents=True, exist_ok=True)
				output = unique_output_path(download_dir, f"{sanitize_filename(metadata.title)}_audio")
				shutil.move(str(assembled), str(output))
			except OSError as exc:
				raise AssemblyError(
					f"Could not save the output to {download_dir}: {exc}",
					hint="Check the download directory, or run setup again (option S).",
				) from exc
			self.summarize(output, audio)

		return output

	def probe(self, url: str) -> tuple[VideoMetadata, Strategy]:
		"""Fetch metadata with mobile clients, then with cookies. Returns the strategy that worked."""
		self.console.info("Fetching video information...")
		strategy = MOBILE
		info = self.ctx.ytdlp.probe(url, strategy)
		if info is None:
			cookies = self.ctx.find_cookies()
			if cookies is not None:
				self.console.warning("Retrying with cookies...")
				strategy = Strategy("cookies", cookies=cookies)
				info = self.ctx.ytdlp.probe(url, strategy)
		if info is None:
			raise MetadataProbeError("Failed to fetch video info")

		metadata = VideoMetadata.from_info(info)
		self.console.line(f"  Title:    {metadata.title}")
		self.console.line(f"  Duration: {formatSeconds(int(metadata.duration))}")
		self.console.line(f"  Uploader: {metadata.uploader}")
		self.console.line()
		return metadata, strategy

	def fetch_audio(self, url: str, work: Path) -> Path:
		self.console.info("Downloading audio track...")
		report = work / "audio.path"
		try:
			self.downloader.download(
				Mode.AUDIO,
				url,
				str(work / "audio.%(ext)s"),
				extra_args=["--print-to-file", "after_move:filepath", str(report)],
			)
		except DownloadFailedError as exc:
			raise AssemblyError(f"Failed to download audio: {exc}", hint=exc.hint) from exc

		audio = None
		if report.is_file():
			reported = [ln.strip() for ln in report.read_text(encoding="utf-8").splitlines() if ln.strip()]
			if reported:
				audio = Path(reported[-1])
		if audio is None or not audio.is_file():
			raise AssemblyError("Failed to download audio - no file found")

		self.console.success(f"Audio downloaded: {audio.name}")
		return audio

	def fetch_thumbnail(self, url: str, work: Path, strategy: Strategy) -> Path:
		"""Always returns an image: the real thumbnail, a converted one, or a black frame."""
		self.console.info("Downloading thumbnail...")
		target = work / "thumbnail.jpg"
		self.ctx.ytdlp.run([
			*strategy.args(),
			"--no-playlist",
			"--write-thumbnail",
			"--skip-download",
			"--convert-thumbnails", "jpg",
			"-o", str(work / "thumbnail.%(ext)s"),
			url,
		], capture=True)

		if target.is_file():
			self.console.success("Thumbnail downloaded")
			return target

		for ext in ALTERNATE_THUMBNAIL_EXTS:
			alternate = work / f"thumbnail.{ext}"
			if alternate.is_file():
				self.console.dim(f"Converting {alternate.name} to jpg")
				if self.ctx.ffmpeg.run(["-i", str(alternate), str(target)]).ok and target.is_file():
					self.console.success("Thumbnail downloaded")
					return target

		self.console.warning("No thumbnail found, creating placeholder...")
		outcome = self.ctx.ffmpeg.run(placeholder_args(target))
		# the mux needs an image input, so no placeholder means no output
		if not outcome.ok or not target.is_file():
			raise AssemblyError(
				"Could not create a placeholder frame",
				hint="Check that ffmpeg is installed and working (run setup with option S).",
			)
		return target

	def fetch_subtitles(self, url: str, work: Path, strategy: Strategy) -> Path | None:
		self.console.info("Downloading subtitles...")
		self.ctx.ytdlp.run([
			*strategy.args(),
			"--no-playlist",
			"--write-subs",
			"--write-auto-subs",
			"--sub-langs", "en",
			"--sub-format", "srt/vtt/best",
			"--convert-subs", "srt",
			"--skip-download",
			"-o", str(work / "subs.%(ext)s"),
			url,
		], capture=True)

		subtitles = work / "subs.en.srt"
		if subtitles.is_file():
			self.console.success("Subtitles downloaded")
			return subtitles
		self.console.warning("No subtitles available")
		return None

	def write_chapters(self, work: Path, metadata: VideoMetadata) -> Path | None:
		self.console.info("Processing chapters...")
		path = write_chapter_metadata(work / "chapters.ffmeta", metadata)
		if path is None:
			self.console.warning("No chapters available")
		else:
			self.console.success(f"Chapters extracted: {len(metadata.chapters)} chapters")
		return path

	def mux(self, artifacts: WorkingArtifacts, metadata: VideoMetadata, output: Path) -> Path:
		self.console.info("Creating optimized video file...")
		self.console.info("Encoding with ffmpeg (this may take a moment)...")
		outcome = self.ctx.ffmpeg.run(build_mux_args(artifacts, metadata, output), capture=False)
		if not outcome.ok or not output.is_file():
			raise AssemblyError(
				f"ffmpeg could not create the output file (exit status {outcome.returncode})",
				hint="Set YTDL_DEBUG=1 to print the ffmpeg command, and check that ffmpeg was built with libx264 and aac.",
			)
		return output

	def embed_cover(self, assembled: Path, thumbnail: Path, scratch: Path) -> bool:
		"""Re-mux with the thumbnail as attached picture; keeps the original on failure."""
		self.console.info("Embedding thumbnail as cover art...")
		outcome = self.ctx.ffmpeg.run(build_cover_args(assembled, thumbnail, scratch))
		if outcome.ok and scratch.is_file():
			os.replace(scratch, assembled)
			self.console.success("Cover art embedded")
			return True
		self.console.warning("Could not embed cover art (file still valid)")
		return False

	def summarize(self, output: Path, audio: Path) -> None:
		final_size = output.stat().st_size
		self.console.line()
		self.console.success("Download complete!")
		self.console.line()
		self.console.line(f"  Output: {output}")
		self.console.line(f"  Size:   {format_bytes(final_size)}")
		self.console.line()

		# a full video is usually about three times the audio
		estimate = audio.stat().st_size * 3
		if estimate > 0 and final_size > 0:
			savings = (estimate - final_size) * 100 // estimate
			if savings > 0:
				self.console.info(f"Estimated space savings: ~{savings}% vs full video")


#-------------------------------------------------------------------------------
# Setup wizard
#-------------------------------------------------------------------------------

def get_shell_rc_file(shell: str | None = None) -> Path:
	home = Path.home()
	shell_name = Path(shell or os.environ.get("SHELL", "bash")).name
	if shell_name == "zsh":
		return home / ".zshrc"
	if shell_name == "fish":
		return home / ".config" / "fish" / "config.fish"
	if shell_name == "bash" and not (home / ".bashrc").exists() and (home / ".bash_profile").exists():
		return home / ".bash_profile"
	return home / ".bashrc"


def strip_marked_alias(lines: list[str]) -> list[str]:
	"""Remove the marker comment and the alias line that follows it."""
	result = []
	skip = False
	for line in lines:
		if skip:
			skip = False
			continue
		if line.strip() == ALIAS_MARKER:
			skip = True
			continue
		result.append(line)
	return result


def desktop_entry_path() -> Path:
	return Path.home() / ".local" / "share" / "applications" / f"{APP_NAME}.desktop"


class SetupWizard:
	"""First-run and on-demand configuration."""

	def __init__(self, ctx: AppContext, resolver: DependencyResolver | None = None, manager: YtDlpManager | None = None):
		self.ctx = ctx
		self.console = ctx.console
		self.resolver = resolver or DependencyResolver(ctx)
		self.manager = manager or YtDlpManager(ctx)

	def run(self) -> Path:
		self.console.header("YOUTUBE DOWNLOADER SETUP")
		self.resolver.check()
		self.manager.ensure()

		download_dir = self.ask_download_dir()
		self.ctx.store.save(replace(self.ctx.store.load(), download_dir=download_dir))
		self.console.success("Configuration saved")

		if sys.platform.startswith("linux"):
			self.console.line()
			if self.console.confirm("Create desktop shortcut?"):
				self.create_desktop_entry()

		self.setup_alias()

		self.console.line()
		self.console.success("Setup complete!")
		self.console.info(f"Download directory: {download_dir}")
		return download_dir

	def ask_download_dir(self) -> Path:
		default = Path.cwd()
		self.console.line()
		self.console.info("Configure Download Location")
		self.console.line(f"Default location: {default}")
		answer = self.console.prompt("Enter download directory (or press Enter for default)")
		directory = Path(answer).expanduser().resolve() if answer else default

		if not directory.is_dir():
			self.console.info(f"Creating directory: {directory}")
		try:
			directory.mkdir(parents=True, exist_ok=True)
		except OSError as exc:
			raise ConfigError(f"Failed to create directory: {directory} ({exc})") from exc

		# Test if we can write to the directory
		test_file = directory / ".write_test"
		try:
			test_file.touch()
			test_file.unlink()
		except OSError as exc:
			raise ConfigError(
				f"Directory is not writable: {directory}",
				hint=f"Choose a folder you have write access to (e.g. {Path.home() / 'Downloads'}).",
			) from exc
		return directory

	def create_desktop_entry(self) -> Path:
		entry = desktop_entry_path()
		try:
			entry.parent.mkdir(parents=True, exist_ok=True)
			entry.write_text(
				"[Desktop Entry]\n"
				"Version=1.0\n"
				"Type=Application\n"
				"Name=YouTube Downloader\n"
				"Comment=Download videos from YouTube\n"
				f"Exec=bash -c '{tool_command()}; exec bash'\n"
				"Icon=video-x-generic\n"
				"Terminal=true\n"
				"Categories=AudioVideo;Network;\n",
				encoding="utf-8",
			)
			entry.chmod(entry.stat().st_mode | stat.S_IXUSR)
		except OSError as exc:
			raise ConfigError(
				f"Could not create desktop shortcut {entry}: {exc}",
				hint=f"Check that {entry.parent} is writable, or skip the shortcut during setup.",
			) from exc
		if shutil.which("update-desktop-database"):
			run_process(["update-desktop-database", str(entry.parent)], capture=True)
		self.console.success("Desktop shortcut created")
		return entry

	def setup_alias(self) -> str | None:
		if os.name == 'nt':
			return None
		self.console.line()
		if not self.console.confirm("Create terminal alias?"):
			return None

		name = self.console.prompt("Enter alias name", default=DEFAULT_ALIAS)
		if not ALIAS_PATTERN.match(name):
			self.console.error("Invalid alias name. Use only letters, numbers, underscores, and hyphens.")
			return None

		rc_file = get_shell_rc_file()
		try:
			lines = rc_file.read_text(encoding="utf-8").splitlines() if rc_file.exists() else []
		except OSError as exc:
			raise ConfigError(f"Could not read {rc_file}: {exc}", hint=f"Check the permissions of {rc_file}.") from exc
		if any(line.strip() == ALIAS_MARKER for line in lines):
			self.console.warning(f"Alias already configured in {rc_file}")
			if not self.console.confirm("Update existing alias?"):
				return None
			lines = strip_marked_alias(lines)

		lines += ["", ALIAS_MARKER, f"alias {name}='{tool_command()}'"]
		try:
			rc_file.parent.mkdir(parents=True, exist_ok=True)
			rc_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
		except OSError as exc:
			raise ConfigError(
				f"Could not write alias to {rc_file}: {exc}",
				hint=f"Add it yourself:\n  alias {name}='{tool_command()}'",
			) from exc
		self.ctx.store.set("AliasName", name)

		self.console.success(f"Alias '{name}' added to {rc_file}")
		self.console.line()
		self.console.warning("To use the alias now, run one of these:")
		self.console.line(f"  source {rc_file}")
		self.console.line("  OR restart your terminal")
		self.console.line()
		self.console.info(f"Then you can simply type: {name}")
		return name


#-------------------------------------------------------------------------------
# Frontend
#-------------------------------------------------------------------------------

def is_valid_url(url: str) -> bool:
	return url.startswith(("http://", "https://"))


def needs_setup(ctx: AppContext) -> bool:
	download_dir = ctx.store.reload().download_dir
	return download_dir is None or not download_dir.is_dir() or not YtDlpManager(ctx).is_installed()


def ask_url(console: Console) -> str:
	while True:
		url = console.prompt("ENTER URL")
		if is_valid_url(url):
			return url
		console.error("INVALID URL. MUST START WITH HTTP:// OR HTTPS://")


def show_menu(console: Console) -> None:
	box = lambda text: console.paint(Fore.CYAN, text)
	key = lambda text, color: console.paint(color, text)
	console.line()
	console.line(box("┌─────────────────────────────────────────┐"))
	console.line(box("│") + console.paint(Style.BRIGHT + Fore.YELLOW, "       YOUTUBE DOWNLOADER                ") + box("│"))
	console.line(box("├─────────────────────────────────────────┤"))
	console.line(box("│") + f"  {key('1)', Fore.GREEN)} VIDEO    (BEST QUALITY MP4)          " + box("│"))
	console.line(box("│") + f"  {key('2)', Fore.GREEN)} AUDIO+   (AUDIO + SINGLE FRAME)      " + box("│"))
	console.line(box("│") + "                                         " + box("│"))
	console.line(box("│") + f"  {key('S)', Fore.MAGENTA)} SETUP    (RECONFIGURE)               " + box("│"))
	console.line(box("│") + f"  {key('U)', Fore.MAGENTA)} UPDATE   (UPDATE YT-DLP)             " + box("│"))
	console.line(box("│") + f"  {key('Q)', Fore.RED)} QUIT                                 " + box("│"))
	console.line(box("└─────────────────────────────────────────┘"))
	console.line()


def show_help(console: Console) -> None:
	head = lambda text: console.paint(Style.BRIGHT + Fore.CYAN, text)
	opt = lambda text: console.paint(Fore.MAGENTA + Style.BRIGHT, text)
	console.line(f"""
{head('USAGE:')}
  {APP_NAME} [OPTIONS] [URL]

{head('OPTIONS:')}
  {opt('--setup, -s')}        Run the setup wizard
  {opt('--update, -u')}       Install or update yt-dlp
  {opt('--audio, -a')} URL    Audio + single frame download of URL
  {opt('--help, -h')}         Show this help

If a URL is given, it is downloaded directly in video mode.
Otherwise the interactive menu is shown.

{head('FILES:')}
  Tool home:  {console.paint(Style.DIM, str(get_app_home()))}
  Cookies:    {COOKIES_FILENAME} in the tool home or the download directory
""")


def parse_args(argv: list[str]) -> dict:
	# Supported:
	#   --help, -h
	#   --setup, -s
	#   --update, -u
	#   --audio, -a               (audio + single frame mode for the URL)
	#   <url>
	args = {
		"help": False,
		"setup": False,
		"update": False,
		"audio": False,
		"urls": [],
		"unknown": [],
	}
	for tok in argv:
		if tok in ("--help", "-h"):
			args["help"] = True
		elif tok in ("--setup", "-s"):
			args["setup"] = True
		elif tok in ("--update", "-u"):
			args["update"] = True
		elif tok in ("--audio", "-a"):
			args["audio"] = True
		elif tok.startswith("-"):
			args["unknown"].append(tok)
		else:
			args["urls"].append(tok)
	return args


def run_direct(ctx: AppContext, url: str, audio: bool = False) -> int:
	"""One-shot download of a URL given on the command line."""
	if not is_valid_url(url):
		ctx.console.error("INVALID URL. MUST START WITH HTTP:// OR HTTPS://")
		return 2

	YtDlpManager(ctx).ensure()
	if needs_setup(ctx):
		SetupWizard(ctx).run()
		ctx.store.reload()

	if audio:
		FrameAssembler(ctx).assemble(url)
	else:
		download_video(ctx, url)
	return 0


def interactive(ctx: AppContext) -> int:
	console = ctx.console
	manager = YtDlpManager(ctx)
	if needs_setup(ctx):
		SetupWizard(ctx).run()

	while True:
		download_dir = ctx.store.reload().download_dir
		console.info(f"DOWNLOAD LOCATION: {download_dir}")
		show_menu(console)

		choice = console.prompt("SELECT OPTION").lower()
		try:
			if choice == "1":
				url = ask_url(console)
				manager.update()
				download_video(ctx, url)
			elif choice == "2":
				url = ask_url(console)
				manager.update()
				FrameAssembler(ctx).assemble(url)
			elif choice == "s":
				SetupWizard(ctx).run()
			elif choice == "u":
				manager.ensure()
				manager.update()
			elif choice == "q":
				console.info("GOODBYE!")
				return 0
			else:
				console.error("INVALID OPTION")
		except YtdlError as exc:
			console.line()
			console.report(exc)
		except KeyboardInterrupt:
			console.line()
			console.warning("Interrupted, back to the menu.")

		console.line()
		console.prompt("PRESS ENTER TO CONTINUE...")


def main(argv: list[str] | None = None) -> int:
	colorama_init()
	console = Console(color=sys.stderr.isatty())
	args = parse_args(sys.argv[1:] if argv is None else argv)

	if args["help"]:
		show_help(console)
		return 0
	for tok in args["unknown"]:
		console.warning(f"Ignoring unknown option: {tok}")

	try:
		ctx = AppContext.create(console)
		if args["setup"]:
			SetupWizard(ctx).run()
			return 0
		if args["update"]:
			manager = YtDlpManager(ctx)
			manager.ensure()
			manager.update()
			return 0
		if args["urls"]:
			return run_direct(ctx, args["urls"][0], audio=args["audio"])
		if args["audio"]:
			console.error("--audio needs a URL")
			return 2
		return interactive(ctx)
	except YtdlError as exc:
		console.line()
		console.report(exc)
		return 1
	except KeyboardInterrupt:
		console.line()
		console.warning("Interrupted by user.")
		return 130
	except EOFError:
		console.line()
		return 0


if __name__ == "__main__":
	sys.exit(main())
