#!/usr/bin/env python3
"""
Stack helper
Prints shell exports to reach the cluster and its databases from stack outputs

Usage:
    python helper.py get_connection_details [--stack NAME]
"""

import argparse
import json
import os
import subprocess
import sys
from typing import Dict, List, Optional

from clusterkit.helpers import connection_details

KUBECONFIG_DIR = os.path.join(os.path.expanduser("~"), ".kube")


def read_stack_outputs(stack: Optional[str] = None) -> Dict[str, object]:
    """
    Read stack outputs, secrets included, with the Pulumi CLI

    Raises:
        RuntimeError: The CLI failed or printed something other than a JSON object
    """
    command = ["pulumi", "stack", "output", "--json", "--show-secrets"]
    if stack:
        command += ["--stack", stack]

    result = subprocess.run(command, capture_output=True, text=True)
    if result.returncode != 0:
        raise RuntimeError(f"pulumi stack output failed: {result.stderr.strip()}")

    try:
        outputs = json.loads(result.stdout or "{}")
    except ValueError as e:
        raise RuntimeError(f"pulumi stack output is not valid JSON: {e}") from e
    if not isinstance(outputs, dict):
        raise RuntimeError("pulumi stack output did not return a JSON object")
    return outputs


def write_kubeconfig(outputs: Dict[str, object], directory: str = KUBECONFIG_DIR) -> Optional[str]:
    """Write the kubeconfig output to <directory>/<cluster_name>.yaml, readable by the owner only"""
    kubeconfig = outputs.get("kubeconfig")
    if not kubeconfig:
        return None

    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, f"{outputs.get('cluster_name') or 'cluster'}.yaml")
    with open(path, "w") as f:
        f.write(str(kubeconfig))
    os.chmod(path, 0o600)
    return path


def get_connection_details(stack: Optional[str] = None, directory: str = KUBECONFIG_DIR) -> List[str]:
    outputs = read_stack_outputs(stack)
    path = write_kubeconfig(outputs, directory)
    if path:
        outputs["kubeconfig_path"] = path
    return connection_details(outputs)


class HelperArgumentParser(argparse.ArgumentParser):
    """Argument parser exiting with status 1 and the usage on bad arguments"""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = HelperArgumentParser(
        prog="helper.py",
        description="Print shell exports to reach the cluster and its databases from stack outputs"
    )
    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    details = commands.add_parser(
        "get_connection_details",
        help="Write the kubeconfig and print export lines for the cluster and its databases"
    )
    details.add_argument("--stack", help="Pulumi stack to read, defaults to the selected stack")
    return parser


def parse_args(argv: List[str]) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)

    try:
        lines = get_connection_details(args.stack)
    except RuntimeError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    for line in lines:
        print(line)
    return 0


if __name__ == "__main__":
    sys.exit(main())
