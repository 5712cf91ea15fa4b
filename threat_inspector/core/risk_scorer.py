from typing import Dict, List, Optional
import math

from threat_inspector.schemas import (
    AttachmentAnalysis, AuthStatus, ContentResult, EmailMetadata,
    SenderResult, SocialEngineering, ThreatLevel, ThreatVerdict, UrlAnalysis
)

MAX_REASONS = 5

RECOMMENDATIONS = {
    ThreatLevel.DANGEROUS: 'DELETE IMMEDIATELY - Do not interact with this email',
    ThreatLevel.SUSPICIOUS: 'EXERCISE CAUTION - Verify sender before taking action',
    ThreatLevel.SAFE: 'Email appears safe - Standard caution advised',
}

INCOMPLETE_RECOMMENDATION = 'Analysis incomplete - exercise caution'


class RiskScorer:
    def __init__(self):
        """
        Combine the four analyzer results into one 0-100 score.

        Pure and deterministic: same inputs, same verdict.
        """
        # Weights of each component score in the total
        self.weights = {
            'sender': 0.2,
            'content': 0.5,
            'url': 0.4,
            'attachment': 0.4,
            'combined': 0.2
        }

        # Verdict thresholds (0-30 / 31-60 / 61-100)
        self.thresholds = {
            'dangerous': 61,
            'suspicious': 31
        }

        self.floors = {
            'social_engineering_high': 45,
            'social_engineering_moderate': 30,
            'impersonation': 60,
            'spam_folder': 40,
            'dangerous_url_combo': 75
        }

    def calculate_threat_score(self, sender: SenderResult, urls: UrlAnalysis,
                               content: ContentResult, attachments: AttachmentAnalysis,
                               metadata: Optional[EmailMetadata] = None) -> ThreatVerdict:
        """Calculate the email threat verdict"""
        metadata = metadata or EmailMetadata()
        has_dangerous_url = urls.dangerous_count > 0

        scores = self.component_scores(sender, urls, content, attachments, metadata)

        weighted = sum(scores[name] * weight for name, weight in self.weights.items())
        total = self._round_half_up(weighted)

        # --- FLOORS: raise only, applied in order ---
        if content.social_engineering == SocialEngineering.HIGH:
            total = max(total, self.floors['social_engineering_high'])
        elif content.social_engineering == SocialEngineering.MODERATE:
            total = max(total, self.floors['social_engineering_moderate'])

        if content.impersonation:
            total = max(total, self.floors['impersonation'])

        if metadata.is_spam_folder:
            total = max(total, self.floors['spam_folder'])

        if has_dangerous_url and (content.short_body_with_links or metadata.is_spam_folder):
            total = max(total, self.floors['dangerous_url_combo'])

        total = min(100, max(0, total))
        level = self._determine_level(total)

        return ThreatVerdict(
            score=total,
            level=level,
            recommendation=RECOMMENDATIONS[level],
            reasons=self._collect_reasons(scores, urls, attachments, content, metadata)
        )

    @staticmethod
    def component_scores(sender: SenderResult, urls: UrlAnalysis, content: ContentResult,
                         attachments: AttachmentAnalysis, metadata: EmailMetadata) -> Dict[str, int]:
        sender_score = 0
        if sender.spf != AuthStatus.PASS:
            sender_score += 40
        if sender.dmarc != AuthStatus.PASS:
            sender_score += 40
        if sender.domain_info.suspicious:
            sender_score += 20

        combined_score = 0
        if content.impersonation and sender_score > 30:
            combined_score += 50

        # Dangerous URLs combined with other strong signals
        if urls.dangerous_count > 0:
            combined_score += 40
            if content.short_body_with_links:
                combined_score += 20
            if metadata.is_spam_folder:
                combined_score += 20

        return {
            'sender': sender_score,
            'content': content.phishing_score,
            'url': 80 if urls.dangerous_count > 0 else 0,
            'attachment': 90 if attachments.dangerous_count > 0 else 0,
            'combined': combined_score
        }

    @staticmethod
    def _collect_reasons(scores: Dict[str, int], urls: UrlAnalysis, attachments: AttachmentAnalysis,
                         content: ContentResult, metadata: EmailMetadata) -> List[str]:
        reasons = []
        if scores['sender'] > 20:
            reasons.append('Sender authentication failed')
        if scores['content'] > 30:
            reasons.append('Phishing patterns detected')
        if scores['url'] > 0:
            reasons.append(f"{urls.dangerous_count} dangerous URL(s)")
        if scores['attachment'] > 0:
            reasons.append(f"{attachments.dangerous_count} dangerous attachment(s)")
        if content.impersonation:
            reasons.append('Impersonation attempt detected')
        if content.short_body_with_links:
            reasons.append('Short email body with embedded links')
        if metadata.is_spam_folder:
            reasons.append('Email is in Spam folder')
        return reasons[:MAX_REASONS]

    @staticmethod
    def _round_half_up(value: float) -> int:
        return int(math.floor(value + 0.5))

    def _determine_level(self, score: int) -> ThreatLevel:
        if score >= self.thresholds['dangerous']:
            return ThreatLevel.DANGEROUS
        elif score >= self.thresholds['suspicious']:
            return ThreatLevel.SUSPICIOUS
        else:
            return ThreatLevel.SAFE

    @staticmethod
    def default_verdict(reason: str) -> ThreatVerdict:
        """Verdict for an analysis that could not complete"""
        return ThreatVerdict(
            score=50,
            level=ThreatLevel.SUSPICIOUS,
            recommendation=INCOMPLETE_RECOMMENDATION,
            reasons=[reason]
        )
