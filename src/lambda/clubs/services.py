"""
Club, membership and invitation use cases on top of the repositories.

Business rules that span records (name uniqueness, owner protection, status
checks against the club) live here. Every membership change drops the
affected user's cached capabilities.
"""
from common import config
from common.errors import ErrorKind, ServiceError, conflict, not_found, validation_error
from authz.capabilities import Capability
from clubs import rules

logger = config.get_logger(__name__)

ACTION_APPROVE = "approve"
ACTION_REJECT = "reject"


class ClubService:
    def __init__(self, clubs, memberships=None, authz=None):
        self.clubs = clubs
        self.memberships = memberships
        self.authz = authz

    def get_club(self, club_id):
        club = self.clubs.get_by_id(club_id)
        if club is None:
            raise not_found("Club not found", clubId=club_id)
        return club

    def list_clubs(self, status=None, cursor=None, limit=None):
        if status:
            rules.check_club_status(status)
        return self.clubs.list(status=status, cursor=cursor, limit=rules.parse_limit(limit))

    def create_club(self, data, creator_id=None, club_id=None):
        """Create a club; the creator, when given, becomes its active owner.

        club_id is for internal retries only. A retry returns the stored club
        only when the same creator made it.
        """
        cleaned = rules.validate_create_club_input(data)
        # Check-then-act: two concurrent creates with the same name can both pass.
        if not self.clubs.is_name_unique(cleaned["name"], exclude_id=club_id):
            raise conflict("Club name already exists", name=cleaned["name"])
        club = self.clubs.create(cleaned, club_id=club_id, created_by=creator_id)
        if creator_id and self.memberships is not None:
            try:
                self.memberships.create(club["id"], creator_id, role=rules.ROLE_OWNER, status=rules.STATUS_ACTIVE)
            except ServiceError as e:
                if e.kind != ErrorKind.CONFLICT:
                    raise
                logger.info("owner membership already present clubId=%s userId=%s", club["id"], creator_id)
            self._invalidate(creator_id)
        logger.info("club create processed clubId=%s creator=%s", club["id"], creator_id)
        return club

    def update_club(self, club_id, data):
        patch = rules.validate_club_patch(data if isinstance(data, rules.ClubPatch) else rules.ClubPatch.from_dict(data))
        current = self.get_club(club_id)
        if current["status"] == rules.CLUB_ARCHIVED:
            raise validation_error("Archived clubs cannot be updated", clubId=club_id)
        if patch.status is not rules.ABSENT:
            rules.check_club_status_transition(current["status"], patch.status)
        if patch.name is not rules.ABSENT:
            if rules.normalize_club_name(patch.name) != rules.normalize_club_name(current["name"]):
                if not self.clubs.is_name_unique(patch.name, exclude_id=club_id):
                    raise conflict("Club name already exists", name=patch.name)
        return self.clubs.update(club_id, patch)

    def _invalidate(self, user_id):
        if self.authz is not None:
            self.authz.invalidate(user_id)


class MembershipService:
    def __init__(self, memberships, clubs, authz=None):
        self.memberships = memberships
        self.clubs = clubs
        self.authz = authz

    def _require_club(self, club_id):
        club = self.clubs.get_by_id(club_id)
        if club is None:
            raise not_found("Club not found", clubId=club_id)
        return club

    def _active_membership(self, club_id, user_id):
        membership = self.memberships.get_by_club_and_user(club_id, user_id)
        if membership is None or membership["status"] != rules.STATUS_ACTIVE:
            raise not_found("Membership not found", clubId=club_id, userId=user_id)
        return membership

    def _invalidate(self, user_id):
        if self.authz is not None:
            self.authz.invalidate(user_id)

    def join_club(self, club_id, user_id, data=None):
        """Request to join. The new membership is a pending member."""
        club = self._require_club(club_id)
        if club["status"] != rules.CLUB_ACTIVE:
            raise validation_error("Club is not accepting members", clubId=club_id, status=club["status"])
        existing = self.memberships.get_by_club_and_user(club_id, user_id)
        if existing is not None and existing["status"] != rules.STATUS_REMOVED:
            raise conflict("User is already a member of this club", clubId=club_id, userId=user_id)
        membership = self.memberships.create(club_id, user_id, data, role=rules.ROLE_MEMBER, status=rules.STATUS_PENDING)
        self._invalidate(user_id)
        logger.info("join requested clubId=%s userId=%s membershipId=%s", club_id, user_id, membership["membershipId"])
        return membership

    def leave_club(self, club_id, user_id):
        membership = self._active_membership(club_id, user_id)
        if membership["role"] == rules.ROLE_OWNER:
            raise validation_error("Owners cannot leave - ownership transfer required", clubId=club_id)
        updated = self.memberships.remove(club_id, user_id, removed_by=user_id, reason="Voluntary departure")
        self._invalidate(user_id)
        logger.info("member left clubId=%s userId=%s", club_id, user_id)
        return updated

    def process_join_request(self, club_id, user_id, action, processed_by, reason=None):
        """Approve (pending -> active) or reject (pending -> removed) a join request."""
        if action not in (ACTION_APPROVE, ACTION_REJECT):
            raise validation_error("action must be approve or reject", field="action")
        reason = rules.check_reason({"reason": reason})
        self._require_club(club_id)
        membership = self.memberships.get_by_club_and_user(club_id, user_id)
        if membership is None or membership["status"] != rules.STATUS_PENDING:
            raise not_found("Join request not found", clubId=club_id, userId=user_id)
        status = rules.STATUS_ACTIVE if action == ACTION_APPROVE else rules.STATUS_REMOVED
        updated = self.memberships.update_status(club_id, user_id, status, processed_by=processed_by, reason=reason)
        self._invalidate(user_id)
        logger.info("join request %s clubId=%s userId=%s by=%s", action, club_id, user_id, processed_by)
        return updated

    def update_member_role(self, club_id, target_user_id, role, actor_id, reason=None):
        rules.check_role(role)
        rules.check_reason({"reason": reason})
        if role == rules.ROLE_OWNER:
            raise validation_error("Owner role cannot be assigned", field="role")
        target = self._active_membership(club_id, target_user_id)
        if target["role"] == rules.ROLE_OWNER:
            raise validation_error("Owner role cannot be changed", clubId=club_id, userId=target_user_id)
        if target["role"] == role:
            return target
        updated = self.memberships.update_role(club_id, target_user_id, role, updated_by=actor_id)
        self._invalidate(target_user_id)
        logger.info(
            "member role changed clubId=%s userId=%s %s->%s by=%s",
            club_id, target_user_id, target["role"], role, actor_id,
        )
        return updated

    def remove_member(self, club_id, target_user_id, principal, reason=None):
        reason = rules.check_reason({"reason": reason})
        target = self._active_membership(club_id, target_user_id)
        if target["role"] == rules.ROLE_OWNER:
            raise validation_error("Club owner cannot be removed", clubId=club_id, userId=target_user_id)
        if target["role"] == rules.ROLE_ADMIN and self.authz is not None:
            self.authz.require_club(principal, club_id, Capability.MANAGE_ADMINS)
        updated = self.memberships.remove(club_id, target_user_id, removed_by=principal.user_id, reason=reason)
        self._invalidate(target_user_id)
        logger.info("member removed clubId=%s userId=%s by=%s", club_id, target_user_id, principal.user_id)
        return updated

    def list_club_members(self, club_id, role=None, status=None, cursor=None, limit=None):
        if role:
            rules.check_role(role)
        if status:
            rules.check_membership_status(status)
        self._require_club(club_id)
        return self.memberships.list_club_members(
            club_id, role=role, status=status, cursor=cursor, limit=rules.parse_limit(limit),
        )

    def get_user_memberships(self, user_id, status=None):
        """User's memberships, each with the club name."""
        if status:
            rules.check_membership_status(status)
        memberships = self.memberships.list_user_memberships(user_id, status=status)
        out = []
        for m in memberships:
            club = self.clubs.get_by_id(m["clubId"])
            item = dict(m)
            item["clubName"] = club["name"] if club else None
            out.append(item)
        return out


ACTION_ACCEPT = "accept"
ACTION_DECLINE = "decline"


class InvitationService:
    """Admins invite existing users; the invitee accepts into an active membership or declines."""

    def __init__(self, invitations, memberships, clubs, profiles=None, authz=None, clock=None):
        self.invitations = invitations
        self.memberships = memberships
        self.clubs = clubs
        self.profiles = profiles
        self.authz = authz
        self.clock = clock

    def _invitation(self, invitation_id):
        invitation = self.invitations.get_by_id(invitation_id)
        if invitation is None:
            raise not_found("Invitation not found", invitationId=invitation_id)
        return invitation

    def invite(self, club_id, data, principal):
        """Create a pending invitation. Inviting an admin also needs manage_admins."""
        cleaned = rules.validate_invitation_input(data)
        user_id = cleaned["userId"]
        club = self.clubs.get_by_id(club_id)
        if club is None:
            raise not_found("Club not found", clubId=club_id)
        if club["status"] != rules.CLUB_ACTIVE:
            raise validation_error("Club is not accepting members", clubId=club_id, status=club["status"])
        if cleaned["role"] == rules.ROLE_ADMIN and self.authz is not None:
            self.authz.require_club(principal, club_id, Capability.MANAGE_ADMINS)
        if self.profiles is not None and self.profiles.get_user_by_id(user_id) is None:
            raise not_found("User not found", userId=user_id)
        existing = self.memberships.get_by_club_and_user(club_id, user_id)
        if existing is not None and existing["status"] != rules.STATUS_REMOVED:
            raise conflict("User is already a member of this club", clubId=club_id, userId=user_id)
        if self.invitations.has_pending_invitation(club_id, user_id):
            raise conflict("User already has a pending invitation to this club", clubId=club_id, userId=user_id)
        invitation = self.invitations.create(
            club_id, user_id, invited_by=principal.user_id, role=cleaned["role"], message=cleaned.get("message"),
        )
        logger.info(
            "user invited clubId=%s userId=%s role=%s by=%s",
            club_id, user_id, cleaned["role"], principal.user_id,
        )
        return invitation

    def process_invitation(self, invitation_id, action, user_id):
        """Accept or decline. Returns {"invitation": ..., "membership": ...?}."""
        if action not in (ACTION_ACCEPT, ACTION_DECLINE):
            raise validation_error("action must be accept or decline", field="action")
        invitation = self._invitation(invitation_id)
        if invitation["userId"] != user_id:
            raise ServiceError(
                ErrorKind.AUTHORIZATION,
                "Invitation is not for this user",
                code="INVITATION_NOT_FOR_USER",
                invitationId=invitation_id,
            )
        rules.check_invitation_status_transition(invitation["status"], rules.INVITATION_ACCEPTED, invitation_id)
        if rules.is_invitation_expired(invitation, rules.now_iso(self.clock)):
            self.invitations.update_status(invitation_id, rules.INVITATION_EXPIRED)
            raise ServiceError(
                ErrorKind.VALIDATION,
                "Invitation has expired",
                code="INVITATION_EXPIRED",
                invitationId=invitation_id,
                expiresAt=invitation["expiresAt"],
            )

        if action == ACTION_DECLINE:
            updated = self.invitations.update_status(invitation_id, rules.INVITATION_DECLINED, processed_by=user_id)
            logger.info("invitation declined invitationId=%s userId=%s", invitation_id, user_id)
            return {"invitation": updated}

        club = self.clubs.get_by_id(invitation["clubId"])
        if club is None or club["status"] != rules.CLUB_ACTIVE:
            raise validation_error("Club is not accepting members", clubId=invitation["clubId"])
        # Membership first: if it conflicts the invitation stays pending.
        membership = self.memberships.create(
            invitation["clubId"],
            user_id,
            role=invitation["role"],
            status=rules.STATUS_ACTIVE,
            invited_by=invitation["invitedBy"],
        )
        updated = self.invitations.update_status(invitation_id, rules.INVITATION_ACCEPTED, processed_by=user_id)
        if self.authz is not None:
            self.authz.invalidate(user_id)
        logger.info(
            "invitation accepted invitationId=%s clubId=%s userId=%s membershipId=%s",
            invitation_id, invitation["clubId"], user_id, membership["membershipId"],
        )
        return {"invitation": updated, "membership": membership}

    def cancel_invitation(self, invitation_id, principal):
        """Cancel a pending invitation; needs invite_members in the invitation's club."""
        invitation = self._invitation(invitation_id)
        if self.authz is not None:
            self.authz.require_club(principal, invitation["clubId"], Capability.INVITE_MEMBERS)
        updated = self.invitations.update_status(invitation_id, rules.INVITATION_CANCELLED, processed_by=principal.user_id)
        logger.info("invitation cancelled invitationId=%s by=%s", invitation_id, principal.user_id)
        return updated

    def list_user_invitations(self, user_id, status=None, cursor=None, limit=None):
        """Caller's invitations, each with the club name."""
        if status:
            rules.check_invitation_status(status)
        page = self.invitations.list_user_invitations(
            user_id, status=status, cursor=cursor, limit=rules.parse_limit(limit),
        )
        names = {}
        for inv in page["invitations"]:
            if inv["clubId"] not in names:
                club = self.clubs.get_by_id(inv["clubId"])
                names[inv["clubId"]] = club["name"] if club else None
            inv["clubName"] = names[inv["clubId"]]
        return page

    def list_club_invitations(self, club_id, status=None, cursor=None, limit=None):
        if status:
            rules.check_invitation_status(status)
        if self.clubs.get_by_id(club_id) is None:
            raise not_found("Club not found", clubId=club_id)
        return self.invitations.list_club_invitations(
            club_id, status=status, cursor=cursor, limit=rules.parse_limit(limit),
        )
