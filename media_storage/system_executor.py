"""Whitelisted execution of the OS queries used for device discovery."""

import logging
import shlex
import shutil
import subprocess
from enum import Enum
from typing import List, Optional, Tuple


logger = logging.getLogger(__name__)


class CommandType(Enum):
    """Supported command types for validation."""
    LSBLK = "lsblk"
    POWERSHELL = "powershell"


# Columns requested from lsblk; SERIAL is what groups are keyed on.
LSBLK_COLUMNS = "NAME,PATH,TYPE,SIZE,FSTYPE,LABEL,MOUNTPOINT,SERIAL,MODEL,TRAN,RM,HOTPLUG"

# Disk -> partition -> logical disk walk, one JSON object per volume.
WINDOWS_VOLUME_QUERY = (
    "$ErrorActionPreference = 'Stop'; "
    "$health = @{}; "
    "Get-PhysicalDisk -ErrorAction SilentlyContinue | ForEach-Object { "
    "$health[[string]$_.DeviceId] = [string]$_.HealthStatus }; "
    "$rows = foreach ($disk in Get-CimInstance Win32_DiskDrive) { "
    "foreach ($part in Get-CimAssociatedInstance -InputObject $disk "
    "-ResultClassName Win32_DiskPartition) { "
    "foreach ($vol in Get-CimAssociatedInstance -InputObject $part "
    "-ResultClassName Win32_LogicalDisk) { "
    "[pscustomobject]@{ "
    "SerialNumber = $disk.SerialNumber; Model = $disk.Model; "
    "InterfaceType = $disk.InterfaceType; MediaType = $disk.MediaType; "
    "DiskIndex = $disk.Index; Health = $health[[string]$disk.Index]; "
    "DeviceID = $vol.DeviceID; VolumeName = $vol.VolumeName; "
    "FileSystem = $vol.FileSystem; Size = $vol.Size; FreeSpace = $vol.FreeSpace; "
    "DriveType = $vol.DriveType } } } }; "
    "@($rows) | ConvertTo-Json -Depth 3 -Compress"
)


class SystemCommandExecutor:
    """Read-only command executor restricted to discovery queries."""

    ALLOWED_COMMANDS = {
        CommandType.LSBLK: {
            'binaries': ('lsblk',),
            'allowed_args': {'-J', '--json', '-b', '--bytes', '-o', '--output', LSBLK_COLUMNS},
        },
        CommandType.POWERSHELL: {
            'binaries': ('powershell', 'pwsh'),
            'allowed_args': {'-NoProfile', '-NonInteractive', '-Command', WINDOWS_VOLUME_QUERY},
        },
    }

    def __init__(self, timeout: int = 30):
        """
        Initialize the SystemCommandExecutor.

        Args:
            timeout: Seconds before a query is abandoned
        """
        self.timeout = timeout

    def resolve_binary(self, command_type: CommandType) -> Optional[str]:
        """Return the first allowed binary found on PATH, or None."""
        for binary in self.ALLOWED_COMMANDS[command_type]['binaries']:
            if shutil.which(binary):
                return binary
        return None

    def is_available(self, command_type: CommandType) -> bool:
        return self.resolve_binary(command_type) is not None

    def execute_lsblk(self) -> Tuple[bool, str, str]:
        """
        Query all block devices as JSON with sizes in bytes.

        Returns:
            Tuple of (success, stdout, stderr)
        """
        args = ['-J', '-b', '-o', LSBLK_COLUMNS]
        return self._execute_command(CommandType.LSBLK, args)

    def execute_windows_volume_query(self) -> Tuple[bool, str, str]:
        """Run the CIM volume query through PowerShell."""
        args = ['-NoProfile', '-NonInteractive', '-Command', WINDOWS_VOLUME_QUERY]
        return self._execute_command(CommandType.POWERSHELL, args)

    def _execute_command(self,
                         command_type: CommandType,
                         args: List[str]) -> Tuple[bool, str, str]:
        """
        Execute a validated command with logging and error handling.

        Args:
            command_type: Type of command to execute
            args: Command arguments

        Returns:
            Tuple of (success, stdout, stderr)
        """
        self._validate_command_args(command_type, args)

        binary = self.resolve_binary(command_type)
        if binary is None:
            binaries = ', '.join(self.ALLOWED_COMMANDS[command_type]['binaries'])
            logger.warning(f"No binary available for {command_type.value} (looked for {binaries})")
            return False, "", f"{command_type.value} not available"

        full_command = [binary] + args
        command_str = ' '.join(shlex.quote(arg) for arg in full_command)
        logger.debug(f"Executing command: {command_str}")

        try:
            result = subprocess.run(
                full_command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False
            )

            success = result.returncode == 0
            if not success:
                logger.error(f"Command failed with return code {result.returncode}: {command_str}")
                logger.error(f"Error output: {result.stderr}")

            return success, result.stdout, result.stderr

        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out: {command_str}")
            return False, "", "Command timed out"

        except OSError as e:
            logger.error(f"Error executing command {command_str}: {e}")
            return False, "", str(e)

    def _validate_command_args(self, command_type: CommandType, args: List[str]) -> None:
        """
        Validate command arguments against the whitelist.

        Raises:
            ValueError: If any argument is not allowed
        """
        allowed_args = self.ALLOWED_COMMANDS[command_type]['allowed_args']
        for arg in args:
            if arg not in allowed_args:
                raise ValueError(f"Argument not allowed for {command_type.value}: {arg}")
