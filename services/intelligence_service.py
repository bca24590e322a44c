"""
Servicer Intelligence Service
Learns per-servicer channel success rates and recurring issues from submission interactions
"""

from collections import Counter, defaultdict, deque
from datetime import datetime, timezone
from typing import Dict, List, Any, Optional

from utils.logger import get_logger

logger = get_logger(__name__)

MAX_INTERACTIONS = 1000


class ServicerIntelligenceService:
    """In-process intelligence store fed by the orchestrator"""

    def __init__(self, max_interactions: int = MAX_INTERACTIONS):
        self.interactions = deque(maxlen=max_interactions)
        # servicer -> channel -> {"attempts", "successes"}
        self.channel_stats: Dict[str, Dict[str, Dict[str, int]]] = defaultdict(
            lambda: defaultdict(lambda: {"attempts": 0, "successes": 0})
        )
        self.error_counts: Dict[str, Counter] = defaultdict(Counter)

    async def record_interaction(self, interaction: Dict[str, Any]):
        """
        Record one interaction

        Args:
            interaction: {type, transaction_id, servicer_id, data}. Submission
                interactions carry data.success and data.channel.
        """
        servicer_id = (interaction.get("servicer_id") or "").lower()
        data = interaction.get("data") or {}

        self.interactions.append({
            **interaction,
            "recorded_at": datetime.now(timezone.utc).isoformat()
        })

        if interaction.get("type") != "submission" or not servicer_id:
            return

        channel = data.get("channel") or "unknown"
        stats = self.channel_stats[servicer_id][channel]
        stats["attempts"] += 1
        if data.get("success"):
            stats["successes"] += 1
        elif data.get("error"):
            self.error_counts[servicer_id][data["error"]] += 1

        logger.debug(f"Recorded submission interaction for {servicer_id} via {channel}")

    async def get_servicer_intelligence(self, servicer_id: str) -> Optional[Dict[str, Any]]:
        """Get learned patterns for a servicer, or None when nothing is known yet"""
        servicer_id = (servicer_id or "").lower()
        channels = self.channel_stats.get(servicer_id)
        if not channels:
            return None

        submission_channels = {
            channel: {
                "attempts": stats["attempts"],
                "successes": stats["successes"],
                "success_rate": stats["successes"] / stats["attempts"] if stats["attempts"] else 0.0
            }
            for channel, stats in channels.items()
        }

        return {
            "servicer_id": servicer_id,
            "patterns": {
                "submission_channels": submission_channels,
                "common_issues": [error for error, _ in self.error_counts[servicer_id].most_common(3)]
            },
            "success_rate": await self.get_success_rate(servicer_id)
        }

    async def get_success_rate(self, servicer_id: str) -> float:
        """Fraction of recorded submissions that succeeded, 0 when none"""
        channels = self.channel_stats.get((servicer_id or "").lower())
        if not channels:
            return 0.0

        attempts = sum(stats["attempts"] for stats in channels.values())
        successes = sum(stats["successes"] for stats in channels.values())
        return successes / attempts if attempts else 0.0

    async def get_recommendations(self, servicer_id: str) -> List[str]:
        """Human-readable recommendations for a servicer"""
        intelligence = await self.get_servicer_intelligence(servicer_id)
        if not intelligence:
            return []

        recommendations = []
        channels = intelligence["patterns"]["submission_channels"]
        best_channel = max(channels, key=lambda channel: channels[channel]["success_rate"])
        recommendations.append(
            f"Best submission channel: {best_channel} "
            f"({channels[best_channel]['success_rate'] * 100:.1f}% success)"
        )

        issues = intelligence["patterns"]["common_issues"]
        if issues:
            recommendations.append(f"Common issues to avoid: {', '.join(issues)}")

        recommendations.append(
            f"Current success rate with this servicer: {intelligence['success_rate'] * 100:.1f}%"
        )
        return recommendations

    def get_interactions(self, servicer_id: str = None) -> List[Dict[str, Any]]:
        """Recorded interactions, optionally for one servicer"""
        if not servicer_id:
            return list(self.interactions)
        return [i for i in self.interactions if (i.get("servicer_id") or "").lower() == servicer_id.lower()]
