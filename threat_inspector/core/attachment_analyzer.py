import logging
from typing import List

from threat_inspector.schemas import AttachmentAnalysis, AttachmentFacts, AttachmentResult

logger = logging.getLogger(__name__)

DANGEROUS_EXTENSIONS = frozenset([
    'exe', 'bat', 'cmd', 'scr', 'vbs', 'js', 'jar', 'msi', 'ps1', 'psm1',
    'com', 'cpl', 'reg', 'hta', 'lnk', 'pif', 'msc', 'apk', 'sh'
])

# Archives and office/PDF formats: common, but worth a look
SUSPICIOUS_EXTENSIONS = frozenset([
    'zip', 'rar', '7z', 'tar', 'gz', 'doc', 'docx', 'docm', 'xls', 'xlsx',
    'xlsm', 'ppt', 'pptx', 'pptm', 'pdf', 'iso', 'img'
])

MACRO_EXTENSIONS = frozenset(['docm', 'xlsm', 'pptm'])


class AttachmentAnalyzer:
    """Filename/extension heuristics only; attachment content is never opened"""

    def __init__(self):
        self.dangerous_extensions = DANGEROUS_EXTENSIONS
        self.suspicious_extensions = SUSPICIOUS_EXTENSIONS
        self.macro_extensions = MACRO_EXTENSIONS

    def analyze_attachments(self, attachments: List[AttachmentFacts]) -> AttachmentAnalysis:
        if not attachments:
            return AttachmentAnalysis()

        results = [self.check_attachment(att) for att in attachments]
        dangerous_count = sum(1 for r in results if r.dangerous)

        if dangerous_count:
            logger.info(f"⚠️ {dangerous_count} dangerous attachment(s) of {len(results)}")

        return AttachmentAnalysis(attachments=results, dangerous_count=dangerous_count)

    def check_attachment(self, attachment: AttachmentFacts) -> AttachmentResult:
        """
        Score one attachment.

        The score is additive and may exceed 100 (e.g. invoice.pdf.exe
        scores 90 + 40); only the dangerous flag feeds the email verdict.
        """
        filename = attachment.filename or ''
        ext = self._get_extension(attachment)

        dangerous = False
        risk_score = 0
        flags = []

        if ext in self.dangerous_extensions:
            dangerous = True
            risk_score = 90
            flags.append(f"Dangerous file type: .{ext}")
        elif ext in self.suspicious_extensions:
            risk_score = 30
            flags.append(f"Requires caution: .{ext}")

        if ext in self.macro_extensions:
            dangerous = True
            risk_score = max(risk_score, 80)
            flags.append('Macro-enabled Office document')

        # More than one extension segment, e.g. invoice.pdf.exe
        if len(filename.split('.')) > 2:
            dangerous = True
            risk_score += 40
            flags.append('Double extension detected')

        return AttachmentResult(
            filename=filename,
            extension=ext,
            dangerous=dangerous,
            risk_score=risk_score,
            flags=flags
        )

    @staticmethod
    def _get_extension(attachment: AttachmentFacts) -> str:
        if attachment.extension:
            return attachment.extension.lower().lstrip('.')
        if '.' in attachment.filename:
            return attachment.filename.rsplit('.', 1)[-1].lower()
        return ''
