"""
cluster_connector.py
--------------------
Thin wrapper around ``kubectl`` for the three things the orchestrator needs
from the cluster: connectivity, a count of Tilt-managed objects, and cleanup
of those objects after teardown.
"""

import logging
import subprocess
from typing import Sequence

from connectors.probes import command_check, probe

logger = logging.getLogger(__name__)


class KubectlConnector:
    """
    Args:
        kubectl_bin (str): kubectl executable.
        timeout (float): seconds allowed for each kubectl call.
    """

    def __init__(self, kubectl_bin: str = "kubectl", timeout: float = 10):
        self.kubectl_bin = kubectl_bin
        self.timeout = timeout

    @property
    def is_reachable(self) -> bool:
        """One ``kubectl cluster-info`` call; never retried."""
        check = command_check([self.kubectl_bin, "cluster-info"], max_attempts=1, timeout=self.timeout)
        return bool(probe(check))

    def count_managed(self, selector: str, kinds: Sequence[str] = ("deployments", "services", "pods")) -> int | None:
        """Number of objects matching ``selector`` across namespaces, None if unknown."""
        proc = self._kubectl("get", ",".join(kinds), "-l", selector, "--all-namespaces", "--no-headers")
        if proc is None or proc.returncode != 0:
            return None
        return len([line for line in proc.stdout.splitlines() if line.strip()])

    def delete_managed(self, selector: str, kinds: Sequence[str]) -> bool:
        """Delete every object of ``kinds`` matching ``selector``. Returns success."""
        proc = self._kubectl("delete", ",".join(kinds), "-l", selector, "--all-namespaces")
        if proc is None:
            return False
        if proc.returncode != 0:
            logger.warning("kubectl delete failed: %s", proc.stderr.strip())
            return False
        logger.info("Deleted cluster objects (%s): %s", selector, proc.stdout.strip())
        return True

    def _kubectl(self, *args: str) -> subprocess.CompletedProcess | None:
        cmd = [self.kubectl_bin, *args]
        logger.debug("kubectl: %s", " ".join(args))
        try:
            return subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("kubectl %s failed: %s", args[0], exc)
            return None
