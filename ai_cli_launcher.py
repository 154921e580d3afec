import argparse
import ctypes
import os
import shutil
import subprocess
import sys
import threading
import time
import traceback
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

import wx

try:  # Windows-only
    import winreg
except ImportError:  # pragma: no cover - exercised on non-Windows only
    winreg = None  # type: ignore[assignment]


CREATE_NO_WINDOW = 0x08000000
CREATE_NEW_CONSOLE = 0x00000010
CREATE_NEW_PROCESS_GROUP = 0x00000200
NODE_WINGET_ID = "OpenJS.NodeJS.LTS"
LINUX_NODE_PACKAGES = ("nodejs", "npm")
VERSION_PROBE_ARGS = ("--version",)
SCRIPT_PATH = os.path.abspath(__file__)
APP_DIR_NAME = "AiCliLauncher"
LAST_RUN_LOG_FILE = "launcher_last_run.log"
RESTART_DELAY_SECONDS = 3.0
LAUNCH_GRACE_DELAY_SECONDS = 1.0
AUTO_START_DELAY_MS = 1000
PATH_DISPLAY_LENGTH = 200
NPM_INSTALL_MAX_ATTEMPTS = 3
NPM_INSTALL_RETRY_DELAY_SECONDS = 2.0
NPM_QUIET_FLAGS = ["--no-fund", "--no-audit", "--no-update-notifier", "--loglevel", "error"]
SYSTEM_ENVIRONMENT_KEY = r"SYSTEM\CurrentControlSet\Control\Session Manager\Environment"
USER_ENVIRONMENT_KEY = r"Environment"
LINUX_TERMINAL_CANDIDATES = ("x-terminal-emulator", "gnome-terminal", "konsole", "xterm")

Log = Callable[[str], None]


@dataclass(frozen=True)
class InstallationTarget:
    key: str
    label: str
    package_name: str
    command_candidates: tuple[str, ...]
    bypass_flag: str
    config_dir_name: str
    runtime_command: str = "node"
    runtime_label: str = "Node.js"
    runtime_package_id: str = NODE_WINGET_ID
    version_probe_args: tuple[str, ...] = VERSION_PROBE_ARGS

    @property
    def shim_name(self) -> str:
        return self.command_candidates[-1]


TARGETS: tuple[InstallationTarget, ...] = (
    InstallationTarget(
        key="claude",
        label="Claude Code",
        package_name="@anthropic-ai/claude-code",
        command_candidates=("claude.cmd", "claude"),
        bypass_flag="--dangerously-skip-permissions",
        config_dir_name=".claude",
    ),
    InstallationTarget(
        key="codex",
        label="Codex CLI",
        package_name="@openai/codex",
        command_candidates=("codex.cmd", "codex"),
        bypass_flag="--dangerously-bypass-approvals-and-sandbox",
        config_dir_name=".codex",
    ),
    InstallationTarget(
        key="gemini",
        label="Gemini CLI",
        package_name="@google/gemini-cli",
        command_candidates=("gemini.cmd", "gemini"),
        bypass_flag="--yolo",
        config_dir_name=".gemini",
    ),
)
DEFAULT_TARGET_KEY = "codex"


def get_target(key: str) -> InstallationTarget:
    for target in TARGETS:
        if target.key == key:
            return target
    raise ValueError(f"Unknown tool: {key}")


def is_windows() -> bool:
    return os.name == "nt"


def is_linux() -> bool:
    return sys.platform.startswith("linux")


def is_admin() -> bool:
    if not is_windows():
        geteuid = getattr(os, "geteuid", None)
        if callable(geteuid):
            try:
                return geteuid() == 0
            except OSError:
                return False
        return False
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())
    except Exception:
        return False


def subprocess_creationflags_kwargs() -> dict[str, int]:
    if is_windows():
        return {"creationflags": CREATE_NO_WINDOW}
    return {}


def normalize_path_for_compare(path: str) -> str:
    expanded = os.path.expandvars(path.strip())
    normalized = os.path.normpath(expanded)
    return os.path.normcase(normalized)


def dedupe_paths(paths: Sequence[str]) -> list[str]:
    unique: list[str] = []
    seen: set[str] = set()
    for path in paths:
        if not path:
            continue
        norm = normalize_path_for_compare(path)
        if norm not in seen:
            unique.append(path)
            seen.add(norm)
    return unique


def powershell_single_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def is_probably_windows_errno_exit_code(code: int) -> bool:
    # npm on Windows sometimes returns negative errno values reinterpreted as unsigned exit codes.
    return code >= 0xFFFF0000


def format_exit_code(code: int) -> str:
    if not is_probably_windows_errno_exit_code(code):
        return str(code)
    signed = code - (1 << 32)
    return f"{code} (Windows errno {signed})"


def get_app_support_directory() -> str:
    if is_linux():
        xdg_state = os.environ.get("XDG_STATE_HOME")
        if xdg_state:
            return os.path.join(xdg_state, APP_DIR_NAME)
        return os.path.join(os.path.expanduser("~"), ".local", "state", APP_DIR_NAME)
    local_app = os.environ.get("LocalAppData")
    if local_app:
        return os.path.join(local_app, APP_DIR_NAME)
    return os.path.join(os.path.expanduser("~"), "AppData", "Local", APP_DIR_NAME)


def get_last_run_log_path() -> str:
    return os.path.join(get_app_support_directory(), LAST_RUN_LOG_FILE)


def reset_last_run_log() -> Optional[str]:
    path = get_last_run_log_path()
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="\n") as f:
            started = time.strftime("%Y-%m-%d %H:%M:%S")
            f.write(f"AI CLI Launcher log started: {started}\n")
        return path
    except OSError:
        return None


def append_persistent_log_line(path: Optional[str], message: str) -> Optional[str]:
    if not path:
        return None
    try:
        with open(path, "a", encoding="utf-8", newline="\n") as f:
            f.write(message + "\n")
        return None
    except OSError as exc:
        return str(exc)


def find_desktop_directory() -> str:
    candidates: list[str] = []
    if is_windows() and winreg is not None:
        try:
            with winreg.OpenKey(
                winreg.HKEY_CURRENT_USER,
                r"Software\Microsoft\Windows\CurrentVersion\Explorer\User Shell Folders",
            ) as key:
                value, _ = winreg.QueryValueEx(key, "Desktop")
                if value:
                    candidates.append(os.path.expandvars(value))
        except OSError:
            pass

    home = os.path.expanduser("~")
    candidates.append(os.path.join(home, "Desktop"))
    candidates.append(os.path.join(home, "OneDrive", "Desktop"))
    for path in candidates:
        if path and os.path.isdir(path):
            return path
    return candidates[0]


def well_known_path_entries() -> list[str]:
    """Install locations that are put in front of PATH for every child process.

    Ordered by precedence. Directories that do not exist yet are kept so that a
    runtime installed mid-run becomes visible to later steps.
    """
    entries: list[str] = []
    if is_windows():
        user_profile = os.environ.get("USERPROFILE")
        if user_profile:
            entries.append(os.path.join(user_profile, "AppData", "Roaming", "npm"))
        appdata = os.environ.get("AppData")
        if appdata:
            entries.append(os.path.join(appdata, "npm"))
        program_files = os.environ.get("ProgramFiles")
        if program_files:
            entries.append(os.path.join(program_files, "nodejs"))
    else:
        entries.append(os.path.join(os.path.expanduser("~"), ".npm-global", "bin"))
        entries.extend(["/usr/local/bin", "/usr/bin"])
    return dedupe_paths(entries)


@dataclass(frozen=True)
class ExecutionContext:
    work_dir: str
    path_entries: tuple[str, ...] = ()
    bypass: bool = False

    def build_env(self, base: Optional[dict[str, str]] = None) -> dict[str, str]:
        env = dict(os.environ if base is None else base)
        existing = [entry for entry in self.path_entries if os.path.isdir(entry)]
        current = env.get("PATH", "")
        if existing:
            env["PATH"] = os.pathsep.join(existing + ([current] if current else []))
        env["npm_config_update_notifier"] = "false"
        return env


def prepare_working_directory(work_dir: Optional[str], log: Log) -> str:
    cleaned = (work_dir or "").strip()
    if not cleaned:
        raise ValueError("Please select a working directory.")
    if not os.path.isdir(cleaned):
        log("Working directory does not exist. Creating...")
        os.makedirs(cleaned, exist_ok=True)
    return cleaned


def build_execution_context(work_dir: str, bypass: bool = False) -> ExecutionContext:
    return ExecutionContext(
        work_dir=work_dir,
        path_entries=tuple(well_known_path_entries()),
        bypass=bypass,
    )


@dataclass(frozen=True)
class ProcessResult:
    exit_code: int
    output_lines: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


Runner = Callable[[list[str], ExecutionContext, Log], ProcessResult]


def resolve_executable(name: str, env: dict[str, str]) -> str:
    if os.path.dirname(name):
        if os.path.isfile(name):
            return name
        raise FileNotFoundError(f"Command not found: {name}")
    found = shutil.which(name, path=env.get("PATH"))
    if not found:
        raise FileNotFoundError(f"Command not found: {name}")
    return found


def start_process(args: list[str], context: ExecutionContext, log: Log) -> "Future[ProcessResult]":
    env = context.build_env()
    executable = resolve_executable(args[0], env)
    log("> " + " ".join(args))
    process = subprocess.Popen(
        [executable, *args[1:]],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        text=True,
        encoding="utf-8",
        errors="replace",
        env=env,
        cwd=context.work_dir,
        **subprocess_creationflags_kwargs(),
    )
    lines: list[str] = []
    lines_lock = threading.Lock()
    future: "Future[ProcessResult]" = Future()

    def pump(stream, prefix: str) -> None:
        for raw_line in stream:
            text = raw_line.rstrip()
            if not text:
                continue
            line = prefix + text
            with lines_lock:
                lines.append(line)
            try:
                log(line)
            except Exception:
                # Keep draining so the child never blocks on a full pipe.
                continue

    readers = [
        threading.Thread(target=pump, args=(process.stdout, ""), daemon=True),
        threading.Thread(target=pump, args=(process.stderr, "ERROR: "), daemon=True),
    ]

    def wait_for_exit() -> None:
        try:
            for reader in readers:
                reader.join()
            code = process.wait()
        except Exception as exc:
            future.set_exception(exc)
            return
        with lines_lock:
            output = tuple(lines)
        future.set_result(ProcessResult(code, output))

    for reader in readers:
        reader.start()
    threading.Thread(target=wait_for_exit, daemon=True).start()
    return future


def run_process(args: list[str], context: ExecutionContext, log: Log) -> ProcessResult:
    return start_process(args, context, log).result()


def build_elevated_command(args: list[str]) -> list[str]:
    if is_windows():
        arg_list = ",".join(powershell_single_quote(arg) for arg in args[1:]) or "@()"
        script = (
            f"$p = Start-Process -FilePath {powershell_single_quote(args[0])} "
            f"-ArgumentList {arg_list} -Verb RunAs -Wait -PassThru; exit $p.ExitCode"
        )
        return ["powershell", "-NoProfile", "-ExecutionPolicy", "Bypass", "-Command", script]
    if is_admin():
        return list(args)
    return ["pkexec", *args]


def run_elevated(args: list[str], context: ExecutionContext, log: Log) -> ProcessResult:
    log("> " + " ".join(args))
    log("Running process with administrator privileges...")
    # Elevated children cannot be piped back into this process.
    completed = subprocess.run(
        build_elevated_command(args),
        env=context.build_env(),
        cwd=context.work_dir,
        **subprocess_creationflags_kwargs(),
    )
    return ProcessResult(completed.returncode)


def is_command_available(command: str, args: Sequence[str], context: ExecutionContext) -> bool:
    env = context.build_env()
    try:
        executable = resolve_executable(command, env)
        completed = subprocess.run(
            [executable, *args],
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            stdin=subprocess.DEVNULL,
            env=env,
            cwd=context.work_dir,
            **subprocess_creationflags_kwargs(),
        )
    except OSError:
        return False
    return completed.returncode == 0


def command_exists(name: str, context: ExecutionContext) -> bool:
    probe = ["where", name] if is_windows() else ["which", name]
    try:
        completed = subprocess.run(
            probe,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            env=context.build_env(),
            **subprocess_creationflags_kwargs(),
        )
        return completed.returncode == 0
    except OSError:
        return False


def find_working_command(
    target: InstallationTarget,
    context: ExecutionContext,
    log: Optional[Log] = None,
) -> Optional[str]:
    for command in target.command_candidates:
        if log:
            log(f"Testing command: {command}")
        if is_command_available(command, target.version_probe_args, context):
            if log:
                log(f"Found working command: {command}")
            return command
    return None


class InstallStatus(Enum):
    INSTALLED = "installed"
    ALREADY_PRESENT = "already_present"
    FAILED = "failed"


@dataclass(frozen=True)
class InstallOutcome:
    status: InstallStatus
    verified: bool = True
    reason: Optional[str] = None

    @property
    def installed(self) -> bool:
        return self.status is InstallStatus.INSTALLED


def detect_linux_distro_family() -> Optional[str]:
    if not is_linux():
        return None
    info: dict[str, str] = {}
    try:
        with open("/etc/os-release", "r", encoding="utf-8") as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or "=" not in line or line.startswith("#"):
                    continue
                key, value = line.split("=", 1)
                info[key] = value.strip().strip('"').strip("'")
    except OSError:
        return None
    haystack = " ".join(v.lower() for v in (info.get("ID", ""), info.get("ID_LIKE", "")) if v)
    if any(token in haystack for token in ("ubuntu", "debian")):
        return "debian"
    if any(token in haystack for token in ("fedora", "rhel", "centos")):
        return "fedora"
    if "arch" in haystack:
        return "arch"
    return None


def linux_package_manager_commands(action: str, packages: Sequence[str]) -> list[list[str]]:
    family = detect_linux_distro_family()
    if family == "debian":
        if action == "install":
            return [["apt-get", "update"], ["apt-get", "install", "-y", *packages]]
        return [["apt-get", "remove", "-y", *packages]]
    if family == "fedora":
        return [["dnf", action, "-y", *packages]]
    if family == "arch":
        flag = "-Sy" if action == "install" else "-R"
        return [["pacman", flag, "--noconfirm", *packages]]
    raise RuntimeError(
        "Unsupported Linux distribution. Supported families: Debian/Ubuntu, Fedora, Arch."
    )


def runtime_install_commands(target: InstallationTarget) -> list[list[str]]:
    if is_windows():
        return [
            [
                "winget",
                "install",
                "-e",
                "--id",
                target.runtime_package_id,
                "--accept-package-agreements",
                "--accept-source-agreements",
                "--silent",
                "--disable-interactivity",
            ]
        ]
    return linux_package_manager_commands("install", LINUX_NODE_PACKAGES)


def runtime_uninstall_commands(target: InstallationTarget) -> list[list[str]]:
    if is_windows():
        return [
            [
                "winget",
                "uninstall",
                "--id",
                target.runtime_package_id,
                "--accept-source-agreements",
                "--silent",
            ]
        ]
    return linux_package_manager_commands("remove", LINUX_NODE_PACKAGES)


def ensure_runtime(
    target: InstallationTarget,
    context: ExecutionContext,
    log: Log,
    runner: Runner = run_process,
) -> InstallOutcome:
    runtime = target.runtime_label
    log(f"\nChecking for {runtime}...")
    if is_command_available(target.runtime_command, target.version_probe_args, context):
        log(f"{runtime} is already installed.")
        return InstallOutcome(InstallStatus.ALREADY_PRESENT)

    manager = "winget" if is_windows() else "the system package manager"
    log(f"{runtime} is not installed. Installing via {manager}...")
    try:
        if not is_windows() and not is_admin():
            raise RuntimeError("Linux package installation requires root privileges.")
        for args in runtime_install_commands(target):
            result = runner(args, context, log)
            if not result.ok:
                raise RuntimeError(
                    f"{args[0]} exited with code {format_exit_code(result.exit_code)}"
                )
    except (OSError, RuntimeError) as exc:
        log(f"Failed to install {runtime}: {exc}")
        log(f"Please install {runtime} manually from https://nodejs.org/")
        return InstallOutcome(InstallStatus.FAILED, verified=False, reason=str(exc))

    log(f"{runtime} installation completed.")
    if is_command_available(target.runtime_command, target.version_probe_args, context):
        log(f"{runtime} installation verified successfully.")
        return InstallOutcome(InstallStatus.INSTALLED)
    # The installer succeeded but PATH changes are not visible yet; a restart picks them up.
    log(
        f"WARNING: {runtime} installation could not be verified. "
        f"You may need to restart or manually install {runtime}."
    )
    return InstallOutcome(InstallStatus.INSTALLED, verified=False)


def npm_install_global(
    target: InstallationTarget,
    context: ExecutionContext,
    log: Log,
    runner: Runner = run_process,
) -> ProcessResult:
    args = ["npm", *NPM_QUIET_FLAGS, "install", "-g", target.package_name]
    result = ProcessResult(1)
    for attempt in range(1, NPM_INSTALL_MAX_ATTEMPTS + 1):
        if attempt > 1:
            log(f"Retrying npm install (attempt {attempt}/{NPM_INSTALL_MAX_ATTEMPTS})...")
        result = runner(args, context, log)
        if result.ok:
            return result
        if attempt < NPM_INSTALL_MAX_ATTEMPTS and is_probably_windows_errno_exit_code(result.exit_code):
            log(
                "Transient npm install failure detected (possible Windows file lock). "
                + f"Retrying in {NPM_INSTALL_RETRY_DELAY_SECONDS:.0f}s..."
            )
            time.sleep(NPM_INSTALL_RETRY_DELAY_SECONDS)
            continue
        break
    return result


def ensure_package(
    target: InstallationTarget,
    context: ExecutionContext,
    log: Log,
    runner: Runner = run_process,
) -> InstallOutcome:
    log(f"\nChecking for {target.label}...")
    if find_working_command(target, context) is not None:
        log(f"{target.label} is already installed.")
        return InstallOutcome(InstallStatus.ALREADY_PRESENT)

    log(f"{target.label} is not installed. Installing via npm...")
    try:
        result = npm_install_global(target, context, log, runner)
    except (OSError, RuntimeError) as exc:
        reason = str(exc)
    else:
        reason = None if result.ok else f"npm exited with code {format_exit_code(result.exit_code)}"
    if reason is not None:
        log(f"Failed to install {target.label}: {reason}")
        log(f"Please ensure {target.runtime_label}/npm is properly installed and try again.")
        return InstallOutcome(InstallStatus.FAILED, verified=False, reason=reason)

    log(f"{target.label} installation completed.")
    command = find_working_command(target, context)
    if command is not None:
        log(f"{target.label} installation verified successfully (using '{command}' command).")
        return InstallOutcome(InstallStatus.INSTALLED)
    log(
        f"WARNING: {target.label} installation could not be verified. "
        "You may need to restart or check your PATH."
    )
    return InstallOutcome(InstallStatus.INSTALLED, verified=False)


def build_cli_command_line(target: InstallationTarget, command: str, bypass: bool) -> str:
    if bypass and target.bypass_flag:
        return f"{command} {target.bypass_flag}"
    return command


def find_terminal_emulator() -> Optional[str]:
    for name in LINUX_TERMINAL_CANDIDATES:
        path = shutil.which(name)
        if path:
            return path
    return None


def launch_in_new_console(target: InstallationTarget, command: str, context: ExecutionContext) -> None:
    command_line = build_cli_command_line(target, command, context.bypass)
    env = context.build_env()
    if is_windows():
        cmd_exe = os.environ.get("ComSpec", r"C:\Windows\System32\cmd.exe")
        subprocess.Popen(
            [cmd_exe, "/k", command_line],
            cwd=context.work_dir,
            env=env,
            creationflags=CREATE_NEW_CONSOLE,
        )
        return

    terminal = find_terminal_emulator()
    if not terminal:
        raise RuntimeError(
            "No terminal emulator found. Install xterm or set up x-terminal-emulator."
        )
    shell_line = f'{command_line}; exec "${{SHELL:-sh}}"'
    if os.path.basename(terminal) == "gnome-terminal":
        args = [terminal, "--", "sh", "-c", shell_line]
    else:
        args = [terminal, "-e", "sh", "-c", shell_line]
    subprocess.Popen(args, cwd=context.work_dir, env=env, start_new_session=True)


def log_current_path(context: ExecutionContext, log: Log) -> None:
    current = context.build_env().get("PATH", "")
    if len(current) > PATH_DISPLAY_LENGTH:
        current = current[:PATH_DISPLAY_LENGTH] + "..."
    log(f"Current PATH: {current}")


class PipelineState(Enum):
    LAUNCHED = "launched"
    ABORTED = "aborted"
    RESTART_SCHEDULED = "restart_scheduled"


@dataclass(frozen=True)
class PipelineOutcome:
    state: PipelineState
    work_dir: str
    command: Optional[str] = None
    runtime: Optional[InstallOutcome] = None
    package: Optional[InstallOutcome] = None


Launcher = Callable[[InstallationTarget, str, ExecutionContext], None]


def run_launch_pipeline(
    target: InstallationTarget,
    work_dir: Optional[str],
    bypass: bool,
    log: Log,
    runner: Runner = run_process,
    launcher: Launcher = launch_in_new_console,
) -> PipelineOutcome:
    work_dir = prepare_working_directory(work_dir, log)
    log(f"Working directory: {work_dir}")
    context = build_execution_context(work_dir, bypass)

    runtime = ensure_runtime(target, context, log, runner)
    package = ensure_package(target, context, log, runner)
    if runtime.installed or package.installed:
        log("\nNew installations completed.")
        return PipelineOutcome(
            PipelineState.RESTART_SCHEDULED,
            work_dir,
            runtime=runtime,
            package=package,
        )

    log(f"\nStarting {target.label}...")
    log_current_path(context, log)
    command = find_working_command(target, context, log)
    if command is None:
        log(f"ERROR: No working {target.label} command found.")
        log("Trying to check npm global installations...")
        try:
            runner(["npm", "list", "-g", "--depth=0"], context, log)
        except OSError as exc:
            log(f"Unable to list npm global packages: {exc}")
        return PipelineOutcome(
            PipelineState.ABORTED,
            work_dir,
            runtime=runtime,
            package=package,
        )

    launcher(target, command, context)
    log(f"{target.label} started successfully. Closing launcher...")
    return PipelineOutcome(
        PipelineState.LAUNCHED,
        work_dir,
        command=command,
        runtime=runtime,
        package=package,
    )


def read_registry_path(root: object, subkey: str) -> str:
    if winreg is None:
        return ""
    try:
        with winreg.OpenKey(root, subkey) as key:
            value, _ = winreg.QueryValueEx(key, "Path")
    except FileNotFoundError:
        return ""
    return os.path.expandvars(str(value or ""))


def refresh_via_shell() -> None:
    if not is_windows():
        return
    subprocess.run(
        ["cmd.exe", "/c", "refreshenv"],
        capture_output=True,
        text=True,
        **subprocess_creationflags_kwargs(),
    )


def refresh_from_registry() -> None:
    if not is_windows() or winreg is None:
        return
    system_path = read_registry_path(winreg.HKEY_LOCAL_MACHINE, SYSTEM_ENVIRONMENT_KEY)
    if system_path:
        os.environ["PATH"] = system_path
    user_path = read_registry_path(winreg.HKEY_CURRENT_USER, USER_ENVIRONMENT_KEY)
    if user_path:
        os.environ["PATH"] = os.environ.get("PATH", "") + os.pathsep + user_path


class EnvironmentRefresher:
    def __init__(self, strategies: Optional[Sequence[Callable[[], None]]] = None) -> None:
        if strategies is None:
            strategies = (refresh_via_shell, refresh_from_registry)
        self.strategies = list(strategies)

    def refresh(self) -> int:
        applied = 0
        for strategy in self.strategies:
            try:
                strategy()
            except Exception:
                continue
            applied += 1
        return applied


@dataclass(frozen=True)
class RestartState:
    work_dir: str
    target_key: str = DEFAULT_TARGET_KEY
    bypass: bool = True
    auto_start: bool = True

    def to_arguments(self) -> list[str]:
        args: list[str] = []
        if self.auto_start:
            args.append("--auto-start")
        args.extend(["--work-dir", self.work_dir, "--tool", self.target_key])
        if not self.bypass:
            args.append("--no-bypass")
        return args


def build_restart_command(state: RestartState) -> list[str]:
    if getattr(sys, "frozen", False):
        return [sys.executable, *state.to_arguments()]
    # Run the script by path; the module may not be importable from the new process's cwd.
    return [sys.executable, SCRIPT_PATH, *state.to_arguments()]


def restart_popen_kwargs() -> dict[str, object]:
    if is_windows():
        return {"creationflags": CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def restart_application(
    state: RestartState,
    log: Log,
    refresher: Optional[EnvironmentRefresher] = None,
) -> bool:
    (refresher or EnvironmentRefresher()).refresh()
    try:
        subprocess.Popen(build_restart_command(state), close_fds=True, **restart_popen_kwargs())
    except OSError as exc:
        log(f"Failed to restart application: {exc}")
        return False
    return True


def is_package_installed_globally(package_name: str, context: ExecutionContext) -> bool:
    env = context.build_env()
    try:
        npm = resolve_executable("npm", env)
        completed = subprocess.run(
            [npm, "list", "-g", "--depth=0"],
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            env=env,
            **subprocess_creationflags_kwargs(),
        )
    except OSError:
        return False
    return package_name in (completed.stdout or "")


def remove_command_shims(command_name: str, log: Log) -> list[str]:
    log(f"Removing {command_name} command files directly...")
    appdata = os.environ.get("AppData")
    if not is_windows() or not appdata:
        return []
    npm_dir = os.path.join(appdata, "npm")
    removed: list[str] = []
    for file_path in (
        os.path.join(npm_dir, command_name),
        os.path.join(npm_dir, f"{command_name}.cmd"),
        os.path.join(npm_dir, f"{command_name}.ps1"),
    ):
        try:
            if os.path.isfile(file_path):
                os.remove(file_path)
                removed.append(file_path)
                log(f"Deleted: {file_path}")
            else:
                log(f"File not found: {file_path}")
        except OSError as exc:
            log(f"File deletion error {file_path}: {exc}")
    return removed


def find_home_directory() -> Optional[str]:
    user_profile = os.environ.get("USERPROFILE")
    if user_profile:
        return user_profile
    home_path = os.environ.get("HOMEPATH")
    if home_path:
        return os.environ.get("HOMEDRIVE", "C:") + home_path
    home = os.path.expanduser("~")
    if home and home != "~":
        return home
    return None


def remove_config_directory(dir_name: str, log: Log) -> Optional[str]:
    log(f"Removing {dir_name} configuration folder...")
    home = find_home_directory()
    if not home:
        log("Could not determine home path.")
        return None
    config_path = os.path.join(home, dir_name)
    if not os.path.isdir(config_path):
        log(f"Configuration folder does not exist: {config_path}")
        return None
    try:
        shutil.rmtree(config_path)
    except PermissionError as exc:
        log(f"Access denied: {config_path} - {exc}")
        log("There might be files in use. Please delete manually.")
        return None
    except FileNotFoundError:
        log(f"Folder not found: {config_path}")
        return None
    except OSError as exc:
        log(f"Configuration folder deletion error {config_path}: {exc}")
        log("Please delete manually.")
        return None
    log(f"Configuration folder deleted: {config_path}")
    return config_path


def uninstall_package(
    target: InstallationTarget,
    context: ExecutionContext,
    log: Log,
    runner: Runner = run_process,
) -> None:
    log(f"Checking {target.label} installation...")
    if not is_package_installed_globally(target.package_name, context):
        log("NPM package not found. Checking files directly...")
    else:
        log("Uninstalling NPM package...")
        try:
            code = runner(["npm", "uninstall", "-g", target.package_name], context, log).exit_code
        except OSError as exc:
            log(f"Process execution error: {exc}")
            code = -1
        if code == 0:
            log("NPM package uninstalled successfully.")
        else:
            log(f"Error occurred during NPM package uninstallation. (Exit code: {format_exit_code(code)})")

    remove_command_shims(target.shim_name, log)
    if command_exists(target.shim_name, context):
        log(f"Warning: {target.shim_name} command is still available. Please check manually.")
    else:
        log(f"{target.shim_name} command has been successfully removed.")
    remove_config_directory(target.config_dir_name, log)


def uninstall_runtime(
    target: InstallationTarget,
    context: ExecutionContext,
    log: Log,
    elevated_runner: Runner = run_elevated,
) -> None:
    runtime = target.runtime_label
    log(f"\nChecking {runtime} installation...")
    if not is_command_available(target.runtime_command, target.version_probe_args, context):
        log(f"{runtime} is not installed.")
        return

    log(f"Uninstalling {runtime}...")
    log("This may require administrator privileges and a confirmation prompt.")
    code = 0
    try:
        for args in runtime_uninstall_commands(target):
            code = elevated_runner(args, context, log).exit_code
            if code != 0:
                break
    except (OSError, RuntimeError) as exc:
        log(f"Process execution error: {exc}")
        code = -1
    if code == 0:
        log(f"{runtime} uninstalled successfully.")
    else:
        log(f"Error occurred during {runtime} uninstallation. (Exit code: {format_exit_code(code)})")


def run_uninstall(
    target: InstallationTarget,
    include_runtime: bool,
    log: Log,
    runner: Runner = run_process,
    elevated_runner: Runner = run_elevated,
) -> None:
    context = build_execution_context(os.path.expanduser("~"))
    uninstall_package(target, context, log, runner)
    if include_runtime:
        uninstall_runtime(target, context, log, elevated_runner)
    log("\nUninstallation process finished.")


class LogFrame(wx.Frame):
    def log(self, message: str) -> None:
        wx.CallAfter(self._append_log, message)

    def _reset_persistent_log_for_new_run(self) -> None:
        self._persistent_log_path = reset_last_run_log()
        self._persistent_log_write_warning_shown = False

    def _append_log(self, message: str) -> None:
        self.log_ctrl.AppendText(message + "\n")
        self.log_ctrl.ShowPosition(self.log_ctrl.GetLastPosition())
        err = append_persistent_log_line(getattr(self, "_persistent_log_path", None), message)
        if err and not getattr(self, "_persistent_log_write_warning_shown", False):
            self._persistent_log_write_warning_shown = True
            warning = f"Persistent log write warning: {err}"
            self.log_ctrl.AppendText(warning + "\n")
            self.log_ctrl.ShowPosition(self.log_ctrl.GetLastPosition())

    def is_busy(self) -> bool:
        worker = getattr(self, "worker_thread", None)
        return bool(worker and worker.is_alive())

    def selected_target(self) -> InstallationTarget:
        index = self.target_choice.GetSelection()
        if 0 <= index < len(TARGETS):
            return TARGETS[index]
        return get_target(DEFAULT_TARGET_KEY)

    def on_close(self, _event: wx.CommandEvent) -> None:
        if self.is_busy():
            wx.MessageBox(
                "An operation is still running. Wait for it to finish before closing.",
                "Operation In Progress",
                wx.OK | wx.ICON_INFORMATION,
                self,
            )
            return
        self.Destroy()


class LauncherFrame(LogFrame):
    def __init__(
        self,
        target: InstallationTarget,
        work_dir: Optional[str] = None,
        bypass: bool = True,
    ) -> None:  # pragma: no cover
        super().__init__(None, title="AI CLI Launcher", size=(720, 520))
        self.worker_thread: Optional[threading.Thread] = None
        self._persistent_log_path: Optional[str] = None
        self._persistent_log_write_warning_shown = False
        self._reset_persistent_log_for_new_run()
        self._build_ui(target, work_dir or find_desktop_directory(), bypass)
        self.Bind(wx.EVT_CLOSE, self.on_close)
        self.Centre()

    def _build_ui(self, target: InstallationTarget, work_dir: str, bypass: bool) -> None:  # pragma: no cover
        panel = wx.Panel(self)
        root = wx.BoxSizer(wx.VERTICAL)
        grid = wx.FlexGridSizer(rows=2, cols=3, vgap=8, hgap=8)
        grid.AddGrowableCol(1, 1)

        tool_label = wx.StaticText(panel, label="&Tool:")
        self.target_choice = wx.Choice(panel, choices=[t.label for t in TARGETS])
        self.target_choice.SetName("Tool")
        self.target_choice.SetSelection(TARGETS.index(target))
        self.target_choice.Bind(wx.EVT_CHOICE, self.on_target_changed)
        grid.Add(tool_label, 0, wx.ALIGN_CENTER_VERTICAL)
        grid.Add(self.target_choice, 1, wx.EXPAND)
        grid.AddSpacer(0)

        work_dir_label = wx.StaticText(panel, label="&Work Directory:")
        self.work_dir_ctrl = wx.TextCtrl(panel, value=work_dir)
        self.work_dir_ctrl.SetName("Work Directory")
        self.browse_btn = wx.Button(panel, label="&Browse...")
        self.browse_btn.Bind(wx.EVT_BUTTON, self.on_browse)
        grid.Add(work_dir_label, 0, wx.ALIGN_CENTER_VERTICAL)
        grid.Add(self.work_dir_ctrl, 1, wx.EXPAND)
        grid.Add(self.browse_btn, 0)
        root.Add(grid, 0, wx.ALL | wx.EXPAND, 12)

        self.bypass_checkbox = wx.CheckBox(panel, label="")
        self.bypass_checkbox.SetValue(bypass)
        root.Add(self.bypass_checkbox, 0, wx.LEFT | wx.RIGHT | wx.BOTTOM, 12)
        self._update_bypass_label(target)

        self.log_ctrl = wx.TextCtrl(
            panel,
            style=wx.TE_MULTILINE | wx.TE_READONLY | wx.TE_DONTWRAP | wx.HSCROLL | wx.TE_RICH2,
        )
        self.log_ctrl.SetName("Launcher Log")
        root.Add(self.log_ctrl, 1, wx.LEFT | wx.RIGHT | wx.BOTTOM | wx.EXPAND, 12)

        self.start_btn = wx.Button(panel, label="&Start", size=(-1, 40))
        self.start_btn.Bind(wx.EVT_BUTTON, self.on_start)
        root.Add(self.start_btn, 0, wx.LEFT | wx.RIGHT | wx.BOTTOM | wx.EXPAND, 12)

        panel.SetSizer(root)
        self.start_btn.SetDefault()

    def _update_bypass_label(self, target: InstallationTarget) -> None:
        self.bypass_checkbox.SetLabel(f"Bypass approvals and sandbox ({target.bypass_flag})")

    def on_target_changed(self, _event: wx.CommandEvent) -> None:
        self._update_bypass_label(self.selected_target())

    def on_browse(self, _event: wx.CommandEvent) -> None:
        dialog = wx.DirDialog(self, "Select working directory", self.work_dir_ctrl.GetValue())
        try:
            if dialog.ShowModal() == wx.ID_OK:
                self.work_dir_ctrl.SetValue(dialog.GetPath())
        finally:
            dialog.Destroy()

    def set_busy(self, busy: bool) -> None:
        def _apply() -> None:
            self.start_btn.Enable(not busy)
            self.browse_btn.Enable(not busy)
            self.target_choice.Enable(not busy)
        wx.CallAfter(_apply)

    def on_start(self, _event: wx.CommandEvent) -> None:
        self.start_pipeline()

    def start_pipeline(self, auto_start: bool = False) -> None:
        if self.is_busy():
            return

        work_dir = self.work_dir_ctrl.GetValue().strip()
        if not work_dir:
            wx.MessageBox(
                "Please select a working directory.",
                "Error",
                wx.OK | wx.ICON_ERROR,
                self,
            )
            return

        if not auto_start:
            self.log_ctrl.Clear()
            self._reset_persistent_log_for_new_run()
        else:
            self.log("Starting auto-execution after restart...")
        self.set_busy(True)
        self.worker_thread = threading.Thread(
            target=self._pipeline_worker,
            args=(self.selected_target(), work_dir, bool(self.bypass_checkbox.GetValue())),
            daemon=True,
        )
        self.worker_thread.start()

    def _pipeline_worker(self, target: InstallationTarget, work_dir: str, bypass: bool) -> None:
        try:
            outcome = run_launch_pipeline(target, work_dir, bypass, self.log)
            self._finish(outcome, target, bypass)
        except Exception as exc:
            self.log(f"An error occurred: {exc}")
            self.log(traceback.format_exc().rstrip())
        finally:
            self.set_busy(False)

    def _finish(self, outcome: PipelineOutcome, target: InstallationTarget, bypass: bool) -> None:
        if outcome.state is PipelineState.LAUNCHED:
            time.sleep(LAUNCH_GRACE_DELAY_SECONDS)
            wx.CallAfter(self.Destroy)
            return
        if outcome.state is PipelineState.RESTART_SCHEDULED:
            self.log(
                f"Restarting application in {RESTART_DELAY_SECONDS:.0f} seconds "
                "to update environment variables..."
            )
            time.sleep(RESTART_DELAY_SECONDS)
            self.log("Restarting application...")
            state = RestartState(work_dir=outcome.work_dir, target_key=target.key, bypass=bypass)
            if restart_application(state, self.log):
                wx.CallAfter(self.Destroy)


class UninstallerFrame(LogFrame):
    def __init__(self, target: InstallationTarget) -> None:  # pragma: no cover
        super().__init__(None, title="AI CLI Uninstaller", size=(640, 460))
        self.worker_thread: Optional[threading.Thread] = None
        self._persistent_log_path: Optional[str] = None
        self._persistent_log_write_warning_shown = False
        self._build_ui(target)
        self.Bind(wx.EVT_CLOSE, self.on_close)
        self.Centre()

    def _build_ui(self, target: InstallationTarget) -> None:  # pragma: no cover
        panel = wx.Panel(self)
        root = wx.BoxSizer(wx.VERTICAL)

        self.target_choice = wx.Choice(panel, choices=[t.label for t in TARGETS])
        self.target_choice.SetName("Tool")
        self.target_choice.SetSelection(TARGETS.index(target))
        self.target_choice.Bind(wx.EVT_CHOICE, self.on_target_changed)
        root.Add(self.target_choice, 0, wx.ALL | wx.EXPAND, 12)

        box = wx.StaticBox(panel, label="Uninstall options")
        box_sizer = wx.StaticBoxSizer(box, wx.VERTICAL)
        self.package_only_radio = wx.RadioButton(box, label="", style=wx.RB_GROUP)
        self.with_runtime_radio = wx.RadioButton(box, label="")
        self.package_only_radio.SetValue(True)
        box_sizer.Add(self.package_only_radio, 0, wx.ALL, 6)
        box_sizer.Add(self.with_runtime_radio, 0, wx.ALL, 6)
        root.Add(box_sizer, 0, wx.LEFT | wx.RIGHT | wx.BOTTOM | wx.EXPAND, 12)
        self._update_option_labels(target)

        self.uninstall_btn = wx.Button(panel, label="&Uninstall", size=(-1, 40))
        self.uninstall_btn.Bind(wx.EVT_BUTTON, self.on_uninstall)
        root.Add(self.uninstall_btn, 0, wx.LEFT | wx.RIGHT | wx.BOTTOM | wx.EXPAND, 12)

        self.log_ctrl = wx.TextCtrl(
            panel,
            style=wx.TE_MULTILINE | wx.TE_READONLY | wx.TE_DONTWRAP | wx.HSCROLL | wx.TE_RICH2,
        )
        self.log_ctrl.SetName("Uninstaller Log")
        root.Add(self.log_ctrl, 1, wx.LEFT | wx.RIGHT | wx.BOTTOM | wx.EXPAND, 12)

        panel.SetSizer(root)

    def _update_option_labels(self, target: InstallationTarget) -> None:
        self.package_only_radio.SetLabel(f"Uninstall {target.label} only")
        self.with_runtime_radio.SetLabel(f"Uninstall {target.label} and {target.runtime_label}")

    def on_target_changed(self, _event: wx.CommandEvent) -> None:
        self._update_option_labels(self.selected_target())

    def set_busy(self, busy: bool) -> None:
        def _apply() -> None:
            self.uninstall_btn.Enable(not busy)
            self.target_choice.Enable(not busy)
        wx.CallAfter(_apply)

    def confirm_uninstall(self, target: InstallationTarget, include_runtime: bool) -> bool:
        if include_runtime:
            message = f"Are you sure you want to uninstall {target.label} and {target.runtime_label}?"
        else:
            message = f"Are you sure you want to uninstall {target.label}?"
        answer = wx.MessageBox(message, "Confirmation", wx.YES_NO | wx.ICON_WARNING, self)
        return answer == wx.YES

    def on_uninstall(self, _event: wx.CommandEvent) -> None:
        if self.is_busy():
            return

        self.log_ctrl.Clear()
        target = self.selected_target()
        include_runtime = bool(self.with_runtime_radio.GetValue())
        if not self.confirm_uninstall(target, include_runtime):
            self.log("Uninstall cancelled.")
            return

        self._reset_persistent_log_for_new_run()
        self.set_busy(True)
        self.worker_thread = threading.Thread(
            target=self._uninstall_worker,
            args=(target, include_runtime),
            daemon=True,
        )
        self.worker_thread.start()

    def _uninstall_worker(self, target: InstallationTarget, include_runtime: bool) -> None:
        try:
            run_uninstall(target, include_runtime, self.log)
            wx.CallAfter(
                wx.MessageBox,
                "Uninstallation process completed.",
                "Completed",
                wx.OK | wx.ICON_INFORMATION,
            )
        except Exception as exc:
            self.log(f"\nAn error occurred: {exc}")
            self.log(traceback.format_exc().rstrip())
        finally:
            self.set_busy(False)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ai-cli-launcher",
        description="Install Node.js and an AI coding CLI if needed, then launch it in a new console.",
    )
    parser.add_argument(
        "--tool",
        choices=[t.key for t in TARGETS],
        default=DEFAULT_TARGET_KEY,
        help="CLI to launch or uninstall (default: %(default)s)",
    )
    parser.add_argument("--work-dir", dest="work_dir", help="Working directory for the CLI session")
    parser.add_argument(
        "--auto-start",
        dest="auto_start",
        action="store_true",
        help="Start immediately (used after a self-restart)",
    )
    parser.add_argument(
        "--no-bypass",
        dest="bypass",
        action="store_false",
        help="Do not pass the approvals/sandbox bypass flag to the CLI",
    )
    parser.add_argument(
        "--uninstall",
        action="store_true",
        help="Open the uninstaller instead of the launcher",
    )
    return parser.parse_args(argv)


class LauncherApp(wx.App):
    def __init__(self, options: argparse.Namespace) -> None:  # pragma: no cover
        self.options = options
        super().__init__(False)

    def OnInit(self) -> bool:
        if not (is_windows() or is_linux()):
            wx.MessageBox(
                "This launcher currently supports Windows and Linux.",
                "Unsupported OS",
                wx.OK | wx.ICON_ERROR,
            )
            return False
        options = self.options
        target = get_target(options.tool)
        if options.uninstall:
            frame = UninstallerFrame(target)
            frame.Show()
            return True

        frame = LauncherFrame(target, work_dir=options.work_dir, bypass=options.bypass)
        frame.Show()
        if options.auto_start:
            wx.CallLater(AUTO_START_DELAY_MS, frame.start_pipeline, True)
        return True


def main(argv: Optional[Sequence[str]] = None) -> int:
    options = parse_args(argv)
    app = LauncherApp(options)
    app.MainLoop()
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
