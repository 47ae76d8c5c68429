from dataclasses import dataclass, field
from typing import Dict, List


@dataclass
class RefreshReport:
    path: str
    refreshed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def summary(self) -> Dict:
        return {
            "path": self.path,
            "refreshed": len(self.refreshed),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
        }
