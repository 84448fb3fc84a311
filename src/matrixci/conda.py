# conda.py
"""
Conda provisioning for one task, run entirely through the task's worker.
"""
from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence

from . import settings
from .model import CommandError, EnvVar
from .ui.console import get_console

DOWNLOAD_TOOLS = [
    "curl -OSs",
    "wget --no-verbose --server-response --no-check-certificate",
]


@dataclass(frozen=True)
class CondaEnv:
    exe: str
    root: str
    name: str
    prefix: str

    def activation_vars(self) -> List[EnvVar]:
        """Variables that activate this environment, in prepend order."""
        return [
            EnvVar("PATH", f"{self.prefix}/bin:{self.root}/bin:$PATH", late=True),
            EnvVar("CONDA_DEFAULT_ENV", self.name),
            EnvVar("CONDA_PYTHON_EXE", f"{self.prefix}/bin/python"),
            EnvVar("CONDA_PREFIX", self.prefix),
            EnvVar("CONDA_EXE", self.exe),
            EnvVar("CONDA_PROMPT_MODIFIER", self.name),
            EnvVar("CONDA_SHLVL", "1"),
        ]


class CondaProvisioner:
    def __init__(
        self,
        worker,
        env: Mapping[str, str],
        *,
        installer_version: str = settings.CONDA_INSTALLER_VERSION,
        default_version: str = settings.CONDA_VERSION,
        base_url: str = settings.CONDA_BASE_URL,
    ):
        self.worker = worker
        self.env = dict(env)
        self.installer_version = installer_version
        self.default_version = default_version
        self.base_url = base_url.rstrip("/")

    def _sh(self, cmd: str):
        return self.worker.run(cmd, self.env)

    @property
    def local_exe(self) -> str:
        return f"{self.worker.workspace}/miniconda/bin/conda"

    def locate(self) -> Optional[str]:
        """Return the path of a usable conda executable, or None."""
        found = self._sh("which conda")
        if found.ok and found.stdout.strip():
            return found.stdout.strip()
        if self.worker.exists("miniconda/bin/conda"):
            return self.local_exe
        return None

    def install(self, version: Optional[str] = None, install_dir: Optional[str] = None) -> bool:
        """
        Download Miniconda and install it into install_dir.

        Returns:
            True if conda could be downloaded and installed, False otherwise.
        """
        console = get_console()
        version = version or self.default_version
        install_dir = install_dir or f"{self.worker.workspace}/miniconda"

        uname = self._sh("uname").stdout.strip()
        os_name = {"Darwin": "MacOSX", "Linux": "Linux"}.get(uname)
        if os_name is None:
            console.print_debug(f"Unsupported platform for conda install: {uname!r}")
            return False

        dl_cmd = None
        for cmd in DOWNLOAD_TOOLS:
            if self._sh(f"which {cmd.split()[0]}").ok:
                dl_cmd = cmd
                break
        if dl_cmd is None:
            console.print_debug("Could not find a download tool for obtaining conda.")
            return False

        installer = f"Miniconda3-{self.installer_version}-{os_name}-x86_64.sh"
        if not self.worker.exists(installer):
            if not self._sh(f"{dl_cmd} {self.base_url}/{installer}").ok:
                return False
        if not self._sh(f"bash ./{installer} -b -p {shlex.quote(install_dir)}").ok:
            return False

        conda_exe = f"{install_dir}/bin/conda"
        reported = self._sh(f"{conda_exe} --version")
        if not reported.ok:
            return False
        parts = reported.stdout.split()
        current = parts[1].strip() if len(parts) > 1 else ""
        if current != version:
            if not self._sh(f"{conda_exe} install -q -y conda={version}").ok:
                return False
        return True

    def create_env(
        self,
        exe: str,
        packages: Sequence[str],
        channels: Sequence[str],
        override_channels: bool,
        env_name: str,
    ) -> CondaEnv:
        """Create env_name holding packages; raises CommandError on failure."""
        root = exe[: -len("/bin/conda")] if exe.endswith("/bin/conda") else exe
        parts = [exe, "create", "-q", "-y", "-n", env_name]
        # --override-channels drops the implicit 'defaults' channel so the
        # listed channels are used verbatim, in priority order.
        if override_channels:
            parts.append("--override-channels")
        for chan in channels:
            parts.extend(["-c", chan])
        cmd = " ".join(parts + [shlex.quote(p) for p in packages])

        result = self._sh(cmd)
        if not result.ok:
            raise CommandError(cmd=cmd, exit_code=result.exit_code, output=result.tail())
        return CondaEnv(exe=exe, root=root, name=env_name, prefix=f"{root}/envs/{env_name}")
