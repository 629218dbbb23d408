"""
Unit tests for the stack helper command line
"""

import json
import shlex
import tempfile
import unittest
from unittest.mock import Mock, patch
import sys
import os

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import helper

STACK_OUTPUTS = {
    "cluster_name": "prod",
    "cluster_endpoint": "https://abc.eks.amazonaws.com",
    "region": "eu-west-3",
    "kubeconfig": "apiVersion: v1\nkind: Config\n",
    "databases": {"orders": {"host": "orders.rds.amazonaws.com", "port": 5432}},
}


def completed(stdout="", returncode=0, stderr=""):
    return Mock(stdout=stdout, returncode=returncode, stderr=stderr)


class TestParseArgs(unittest.TestCase):

    def test_command_only(self):
        args = helper.parse_args(["get_connection_details"])
        self.assertEqual((args.command, args.stack), ("get_connection_details", None))

    def test_with_stack(self):
        self.assertEqual(helper.parse_args(["get_connection_details", "--stack", "prod"]).stack, "prod")
        self.assertEqual(helper.parse_args(["get_connection_details", "--stack=prod"]).stack, "prod")

    def test_rejected(self):
        for argv in ([], ["get_connection_details", "--stack"], ["get_connection_details", "--region", "eu"]):
            with patch('sys.stderr'):
                with self.assertRaises(SystemExit) as ctx:
                    helper.parse_args(argv)
            self.assertEqual(ctx.exception.code, 1)

    def test_help(self):
        with patch('sys.stdout') as mock_stdout:
            with self.assertRaises(SystemExit) as ctx:
                helper.parse_args(["--help"])
        self.assertEqual(ctx.exception.code, 0)
        written = "".join(call.args[0] for call in mock_stdout.write.call_args_list)
        self.assertIn("get_connection_details", written)


class TestGetConnectionDetails(unittest.TestCase):

    def test_reads_outputs_and_writes_kubeconfig(self):
        with tempfile.TemporaryDirectory() as directory, \
                patch('helper.subprocess.run', return_value=completed(json.dumps(STACK_OUTPUTS))) as mock_run:
            lines = helper.get_connection_details("prod", directory)

            command = mock_run.call_args.args[0]
            self.assertEqual(command, ["pulumi", "stack", "output", "--json", "--show-secrets", "--stack", "prod"])

            path = os.path.join(directory, "prod.yaml")
            with open(path) as f:
                self.assertEqual(f.read(), STACK_OUTPUTS["kubeconfig"])
            self.assertEqual(lines[0], f"export KUBECONFIG={shlex.quote(path)}")
            self.assertIn("export ORDERS_HOST=orders.rds.amazonaws.com", lines)
            self.assertIn("export ORDERS_PORT=5432", lines)

    def test_without_kubeconfig(self):
        outputs = {key: value for key, value in STACK_OUTPUTS.items() if key != "kubeconfig"}
        with tempfile.TemporaryDirectory() as directory, \
                patch('helper.subprocess.run', return_value=completed(json.dumps(outputs))):
            lines = helper.get_connection_details(None, directory)

            self.assertEqual(os.listdir(directory), [])
            self.assertEqual(lines[0], "export CLUSTER_NAME=prod")

    def test_cli_failure(self):
        with patch('helper.subprocess.run', return_value=completed(returncode=255, stderr="no stack selected")):
            with self.assertRaises(RuntimeError) as ctx:
                helper.read_stack_outputs()
            self.assertIn("no stack selected", str(ctx.exception))

    def test_invalid_json(self):
        with patch('helper.subprocess.run', return_value=completed("not json")):
            with self.assertRaises(RuntimeError):
                helper.read_stack_outputs()


class TestMain(unittest.TestCase):

    def test_unknown_command_exits_with_usage(self):
        with patch('sys.stderr') as mock_stderr:
            with self.assertRaises(SystemExit) as ctx:
                helper.main(["destroy_everything"])
            self.assertEqual(ctx.exception.code, 1)
            written = "".join(call.args[0] for call in mock_stderr.write.call_args_list)
            self.assertIn("usage:", written)

    def test_prints_exports(self):
        with patch('helper.get_connection_details', return_value=["export CLUSTER_NAME='prod'"]), \
                patch('builtins.print') as mock_print:
            self.assertEqual(helper.main(["get_connection_details"]), 0)
            mock_print.assert_called_once_with("export CLUSTER_NAME='prod'")

    def test_reports_errors(self):
        with patch('helper.get_connection_details', side_effect=RuntimeError("boom")), \
                patch('sys.stderr'):
            self.assertEqual(helper.main(["get_connection_details"]), 1)


if __name__ == "__main__":
    unittest.main()
