#!/usr/bin/env python3

import os
import re
import signal
import subprocess
import tempfile
from pathlib import Path

from .logger import log_message


class VpnGuardError(Exception):
    """Base exception for supervisor failures."""
    pass


class CommandError(VpnGuardError):
    """An external command could not be run or exited non-zero."""
    def __init__(self, message, returncode=None, stderr=None):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


def run_command(command, check=True, capture_output=False, text=True, timeout=None, sudo=False, shell=False, env=None, cwd=None, input=None):
    """Runs a command, optionally with sudo, and logs it at DEBUG verbosity."""
    full_command = []
    if sudo:
        full_command.append("sudo")

    if isinstance(command, list):
        full_command.extend(command)
    else:
        # If shell=True, command should be a string
        if shell:
            full_command.append(command)
        else:
            full_command.extend(command.split())

    cmd_str = ' '.join(full_command) if not shell else full_command[-1]
    log_message(5, f"Running command: {cmd_str}")

    try:
        result = subprocess.run(
            full_command if not shell else cmd_str,
            check=check,
            capture_output=capture_output,
            text=text,
            timeout=timeout,
            shell=shell,
            env=env,
            cwd=cwd,
            input=input
        )
        if capture_output:
            stdout_output = (result.stdout or "").strip()
            stderr_output = (result.stderr or "").strip()

            if len(stdout_output) > 200:
                log_message(5, f"Command output: [TRUNCATED - {len(stdout_output)} chars] {stdout_output[:100]}...")
            else:
                log_message(5, f"Command output: {stdout_output}")

            if stderr_output:
                if len(stderr_output) > 200:
                    log_message(5, f"Command error : [TRUNCATED - {len(stderr_output)} chars] {stderr_output[:100]}...")
                else:
                    log_message(5, f"Command error : {stderr_output}")
        return result
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.strip() if isinstance(e.stderr, str) else None
        log_message(1, f"Command failed: {cmd_str}")
        log_message(1, f"Stderr: {stderr or 'N/A'}")
        raise CommandError(f"Command failed: {cmd_str}", returncode=e.returncode, stderr=stderr) from e
    except subprocess.TimeoutExpired as e:
        log_message(1, f"Command timed out: {cmd_str}")
        raise CommandError(f"Command timed out after {timeout}s: {cmd_str}") from e
    except OSError as e:
        log_message(1, f"Failed to run command '{cmd_str}'. Error: {e}")
        raise CommandError(f"Failed to run command '{cmd_str}': {e}") from e


def find_pids(process_name, exact=True):
    """Finds PIDs by process name using pgrep; returns a list of ints.

    Always a live lookup: callers must not cache the result across decisions.
    """
    args = ["pgrep", "-x" if exact else "-f", process_name]
    try:
        result = run_command(args, check=False, capture_output=True)
    except CommandError as e:
        log_message(1, f"Error running pgrep for '{process_name}': {e}")
        return []

    if result.returncode != 0 or not result.stdout:
        log_message(5, f"No PIDs found for '{process_name}'.")
        return []

    pids = []
    for line in result.stdout.strip().splitlines():
        line = line.strip()
        if line.isdigit():
            pids.append(int(line))
    log_message(5, f"Found PIDs for '{process_name}': {pids}")
    return pids


def signal_processes(pids, signum=signal.SIGTERM):
    """Sends a signal to each PID; processes that already exited are skipped."""
    for pid in pids:
        try:
            os.kill(pid, signum)
            log_message(5, f"Sent signal {signum} to PID {pid}.")
        except ProcessLookupError:
            log_message(5, f"Process not found (PID: {pid}). Already terminated?")
        except PermissionError:
            log_message(1, f"Permission denied to signal process (PID: {pid}).")


def atomic_write_text(path, content, mode=0o644):
    """Writes a file through a temp file in the same directory plus rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, 'w') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


_NATURAL_SPLIT = re.compile(r'(\d+)')


def natural_key(name):
    """Sort key so that utun2 orders before utun10."""
    return [int(part) if part.isdigit() else part for part in _NATURAL_SPLIT.split(name)]
