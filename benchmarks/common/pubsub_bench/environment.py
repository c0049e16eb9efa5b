"""
Environment detection and system information collection.
"""

import platform
import subprocess
from dataclasses import asdict, dataclass
from enum import StrEnum

import psutil

from .config import BenchConfig


class CpuArchitecture(StrEnum):
    """Normalized CPU architecture values"""
    X86_64 = "x86_64"
    ARM64 = "arm64"  # aarch64 is reported as arm64
    UNKNOWN = "unknown"

    @classmethod
    def detect(cls) -> "CpuArchitecture":
        machine = platform.machine().lower()
        if machine in ("x86_64", "amd64"):
            return cls.X86_64
        elif machine in ("arm64", "aarch64"):
            return cls.ARM64
        return cls.UNKNOWN


@dataclass
class HostInfo:
    """Machine the benchmark process runs on"""
    hostname: str
    cpu_model: str
    cpu_arch: CpuArchitecture
    cpu_cores: int
    ram_gb: float
    os_name: str
    kernel: str
    python_version: str


@dataclass
class TransportInfo:
    """What the run talked to"""
    scheme: str
    endpoint: str
    qos: int
    max_payload: int


@dataclass
class Environment:
    """Complete environment snapshot"""
    host: HostInfo
    transport: TransportInfo

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)


def detect_cpu_model() -> str:
    """CPU brand string, falling back to platform.processor()"""
    cpu_model = platform.processor() or "Unknown"

    # platform.processor() only says "arm" on macOS
    if platform.system() == "Darwin":
        try:
            result = subprocess.run(
                ["sysctl", "-n", "machdep.cpu.brand_string"],
                capture_output=True,
                text=True,
                timeout=2,
            )
            if result.returncode == 0 and result.stdout.strip():
                cpu_model = result.stdout.strip()
        except (OSError, subprocess.SubprocessError):
            pass
    elif platform.system() == "Linux":
        try:
            with open("/proc/cpuinfo") as f:
                for line in f:
                    if line.startswith("model name"):
                        cpu_model = line.split(":", 1)[1].strip()
                        break
        except OSError:
            pass

    return cpu_model


def collect_host() -> HostInfo:
    return HostInfo(
        hostname=platform.node(),
        cpu_model=detect_cpu_model(),
        cpu_arch=CpuArchitecture.detect(),
        cpu_cores=psutil.cpu_count(logical=False) or psutil.cpu_count() or 0,
        ram_gb=round(psutil.virtual_memory().total / (1024**3), 2),
        os_name=platform.system(),
        kernel=platform.release(),
        python_version=platform.python_version(),
    )


def collect_environment(config: BenchConfig) -> Environment:
    """Collect the host snapshot and the transport settings of a run"""
    return Environment(
        host=collect_host(),
        transport=TransportInfo(
            scheme=config.transport,
            endpoint=config.broker,
            qos=int(config.qos),
            max_payload=config.max_payload,
        ),
    )
