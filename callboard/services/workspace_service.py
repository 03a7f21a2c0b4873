from fastapi import HTTPException
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging
import secrets
from callboard.core.database import Database
from callboard.services.email_service import EmailService
from callboard.utils.helpers import display_name, initials, is_valid_email, normalize_email, parse_timestamp

logger = logging.getLogger(__name__)

INVITATION_TTL = timedelta(days=7)
SECRET_FIELDS = ("twilio_auth_token", "elevenlabs_api_key", "google_client_secret")
DUPLICATE_INVITATION = "このメールアドレスにはすでに招待を送信済みです"


class WorkspaceService:
    def __init__(self, db: Database, email_service: Optional[EmailService] = None):
        self.db = db
        self.email_service = email_service

    def _workspace(self, workspace_id: str) -> Dict[str, Any]:
        workspace = self.db.get("workspaces", workspace_id)
        if not workspace:
            raise HTTPException(status_code=404, detail="Workspace not found")
        return workspace

    def get_settings(self, workspace_id: str) -> Dict[str, Any]:
        """Workspace record with secrets replaced by configured flags"""
        workspace = dict(self._workspace(workspace_id))
        for field in SECRET_FIELDS:
            workspace[f"has_{field}"] = bool(workspace.pop(field, None))
        workspace.pop("settings", None)
        return workspace

    def update_settings(self, workspace_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        self._workspace(workspace_id)
        self.db.update("workspaces", workspace_id, values)
        logger.info(f"Updated workspace {workspace_id}: {', '.join(sorted(values))}")
        return self.get_settings(workspace_id)

    # members

    def list_members(self, workspace_id: str) -> List[Dict[str, Any]]:
        members = (
            self.db.table("workspace_members").select("*")
            .eq("workspace_id", workspace_id)
            .order("created_at")
            .execute().data
        ) or []
        profiles = {p["id"]: p for p in self.db.by_ids("profiles", [m["user_id"] for m in members])}

        result = []
        for member in members:
            profile = profiles.get(member["user_id"], {})
            name = display_name(profile.get("full_name"), profile.get("email"))
            result.append({
                "id": member["id"],
                "user_id": member["user_id"],
                "role": member["role"],
                "name": name,
                "email": profile.get("email") or "",
                "avatar_url": profile.get("avatar_url"),
                "initials": initials(name),
                "created_at": member.get("created_at"),
            })
        return result

    def _member(self, workspace_id: str, member_id: str) -> Dict[str, Any]:
        member = self.db.get("workspace_members", member_id)
        if not member or member["workspace_id"] != workspace_id:
            raise HTTPException(status_code=404, detail="Member not found")
        return member

    def update_member_role(self, workspace_id: str, member_id: str, role: str) -> Dict[str, Any]:
        if role not in ("admin", "member"):
            raise HTTPException(status_code=400, detail=f"Invalid role: {role}")
        member = self._member(workspace_id, member_id)
        if member["role"] == "owner":
            raise HTTPException(status_code=400, detail="The workspace owner's role cannot be changed")
        return self.db.update("workspace_members", member_id, {"role": role})

    def remove_member(self, workspace_id: str, member_id: str) -> None:
        member = self._member(workspace_id, member_id)
        if member["role"] == "owner":
            raise HTTPException(status_code=400, detail="The workspace owner cannot be removed")
        self.db.delete("workspace_members", member_id)
        logger.info(f"Removed member {member_id} from workspace {workspace_id}")

    # invitations

    def list_pending_invitations(self, workspace_id: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or datetime.now(timezone.utc)
        return (
            self.db.table("workspace_invitations").select("*")
            .eq("workspace_id", workspace_id)
            .is_("accepted_at", "null")
            .gt("expires_at", now.isoformat())
            .order("created_at", desc=True)
            .execute().data
        ) or []

    def invite(self, workspace_id: str, email: str, role: str, invited_by: str) -> Dict[str, Any]:
        email = normalize_email(email)
        if not is_valid_email(email):
            raise HTTPException(status_code=400, detail="Invalid email address")
        if role not in ("admin", "member"):
            raise HTTPException(status_code=400, detail=f"Invalid role: {role}")
        workspace = self._workspace(workspace_id)

        pending = [i for i in self.list_pending_invitations(workspace_id) if i["email"] == email]
        if pending:
            raise HTTPException(status_code=409, detail=DUPLICATE_INVITATION)

        invitation = self.db.insert("workspace_invitations", {
            "workspace_id": workspace_id,
            "email": email,
            "role": role,
            "invited_by": invited_by,
            "token": secrets.token_urlsafe(32),
            "expires_at": (datetime.now(timezone.utc) + INVITATION_TTL).isoformat(),
        })

        email_sent = False
        if self.email_service:
            inviter = self.db.get("profiles", invited_by) or {}
            try:
                self.email_service.send_invitation(
                    email,
                    invitation["token"],
                    display_name(inviter.get("full_name"), inviter.get("email")),
                    workspace.get("name") or "",
                    role,
                )
                email_sent = True
            except HTTPException as e:
                logger.error(f"Failed to send invitation email to {email}: {e.detail}")
        return {"invitation": invitation, "email_sent": email_sent}

    def revoke_invitation(self, workspace_id: str, invitation_id: str) -> None:
        (
            self.db.table("workspace_invitations").delete()
            .eq("id", invitation_id)
            .eq("workspace_id", workspace_id)
            .execute()
        )

    def accept_invitation(self, token: str, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        matches = self.db.find("workspace_invitations", token=token)
        invitation = matches[0] if matches else None
        if not invitation or invitation.get("accepted_at"):
            raise HTTPException(status_code=404, detail="Invitation not found")
        if parse_timestamp(invitation["expires_at"]) <= now:
            raise HTTPException(status_code=410, detail="Invitation has expired")

        existing = self.db.find("workspace_members", workspace_id=invitation["workspace_id"], user_id=user_id)
        member = existing[0] if existing else self.db.insert("workspace_members", {
            "workspace_id": invitation["workspace_id"],
            "user_id": user_id,
            "role": invitation["role"],
        })
        self.db.update("workspace_invitations", invitation["id"], {"accepted_at": now.isoformat()})
        logger.info(f"User {user_id} joined workspace {invitation['workspace_id']}")
        return member
