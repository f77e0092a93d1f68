"""Unit tests for SystemCommandExecutor."""

import subprocess
import unittest
from unittest.mock import Mock, patch

from media_storage.system_executor import LSBLK_COLUMNS, CommandType, SystemCommandExecutor


class TestSystemCommandExecutor(unittest.TestCase):
    """Test cases for SystemCommandExecutor class."""

    def setUp(self):
        """Set up test fixtures."""
        self.executor = SystemCommandExecutor(timeout=5)

    def test_disallowed_arguments_rejected(self):
        """Arguments outside the whitelist raise before anything runs."""
        for args in (['-J', '--exec'], ['-o', 'NAME;reboot'], ['&&', 'rm'], ['-J', '/dev/sda']):
            with self.subTest(args=args):
                with self.assertRaises(ValueError):
                    self.executor._execute_command(CommandType.LSBLK, args)

    @patch('media_storage.system_executor.shutil.which', return_value=None)
    def test_missing_binary(self, mock_which):
        success, stdout, stderr = self.executor.execute_lsblk()
        self.assertFalse(success)
        self.assertIn('not available', stderr)
        self.assertFalse(self.executor.is_available(CommandType.LSBLK))

    @patch('media_storage.system_executor.shutil.which')
    def test_powershell_falls_back_to_pwsh(self, mock_which):
        mock_which.side_effect = lambda name: '/usr/bin/pwsh' if name == 'pwsh' else None
        self.assertEqual(self.executor.resolve_binary(CommandType.POWERSHELL), 'pwsh')

    @patch('media_storage.system_executor.shutil.which', return_value='/usr/bin/lsblk')
    @patch('media_storage.system_executor.subprocess.run')
    def test_successful_execution(self, mock_run, mock_which):
        mock_run.return_value = Mock(returncode=0, stdout='{"blockdevices": []}', stderr='')

        success, stdout, stderr = self.executor.execute_lsblk()

        self.assertTrue(success)
        self.assertEqual(stdout, '{"blockdevices": []}')
        args, kwargs = mock_run.call_args
        self.assertEqual(args[0], ['lsblk', '-J', '-b', '-o', LSBLK_COLUMNS])
        self.assertEqual(kwargs['timeout'], 5)

    @patch('media_storage.system_executor.shutil.which', return_value='/usr/bin/lsblk')
    @patch('media_storage.system_executor.subprocess.run')
    def test_failed_execution(self, mock_run, mock_which):
        mock_run.return_value = Mock(returncode=32, stdout='', stderr='lsblk: failure')
        success, _, stderr = self.executor.execute_lsblk()
        self.assertFalse(success)
        self.assertEqual(stderr, 'lsblk: failure')

    @patch('media_storage.system_executor.shutil.which', return_value='/usr/bin/lsblk')
    @patch('media_storage.system_executor.subprocess.run')
    def test_timeout(self, mock_run, mock_which):
        mock_run.side_effect = subprocess.TimeoutExpired('lsblk', 5)
        success, _, stderr = self.executor.execute_lsblk()
        self.assertFalse(success)
        self.assertEqual(stderr, 'Command timed out')

    @patch('media_storage.system_executor.shutil.which', return_value='C:\\powershell.exe')
    @patch('media_storage.system_executor.subprocess.run')
    def test_windows_volume_query(self, mock_run, mock_which):
        mock_run.return_value = Mock(returncode=0, stdout='[]', stderr='')
        success, stdout, _ = self.executor.execute_windows_volume_query()
        self.assertTrue(success)
        command = mock_run.call_args[0][0]
        self.assertEqual(command[0], 'powershell')
        self.assertIn('-NonInteractive', command)


if __name__ == '__main__':
    unittest.main()
