from typing import Optional, Dict, Any, Protocol


class AuditLogger(Protocol):
    def log(self, action: str, phone: Optional[str] = None, user_id: Optional[str] = None,
            role: Optional[str] = None, ip_address: Optional[str] = None, request_id: Optional[str] = None,
            success: bool = True, details: Optional[Dict[str, Any]] = None) -> None:
        ...
