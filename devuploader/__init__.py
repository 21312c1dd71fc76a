__version__ = "0.1.0"

__all__ = [
	"ChangeAggregator",
	"IgnoreRules",
	"SFTPConnection",
	"SSHClientConfig",
	"UploadCoordinator",
	"UploadPair",
	"WatchSettings",
	"Watcher",
	"split_to_n_chunks",
]

from .aggregator import ChangeAggregator
from .config import UploadPair, WatchSettings
from .events import IgnoreRules
from .ssh_client import SFTPConnection, SSHClientConfig
from .transfer import UploadCoordinator
from .utils import split_to_n_chunks
from .watch import Watcher
