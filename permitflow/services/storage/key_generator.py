import re
from uuid import UUID


class KeyGenerator:
    @staticmethod
    def _safe_filename(filename: str) -> str:
        # Simple sanitization
        return re.sub(r"[^a-zA-Z0-9_.-]", "_", filename)

    @staticmethod
    def document_file_name(application_number: str, kind: str) -> str:
        suffix = {
            "certificate": "certificate",
            "recommendation_form": "recommendation",
            "challan": "challan",
        }.get(kind)
        if suffix is None:
            raise ValueError(f"Unknown document kind: {kind}")
        return KeyGenerator._safe_filename(f"{application_number}_{suffix}.pdf")

    @staticmethod
    def generate_document_key(application_id: UUID, kind: str, file_name: str) -> str:
        safe_filename = KeyGenerator._safe_filename(file_name)
        if kind == "certificate":
            return f"applications/{application_id}/certificates/{safe_filename}"
        elif kind == "recommendation_form":
            return f"applications/{application_id}/recommendation-forms/{safe_filename}"
        elif kind == "challan":
            return f"applications/{application_id}/challans/{safe_filename}"
        else:
            raise ValueError(f"Unknown document kind: {kind}")
