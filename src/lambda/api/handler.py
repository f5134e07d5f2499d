"""
API Gateway HTTP API (payload 2.0) handler for clubs and memberships. Routes by path.
"""
import json
import re
import sys
from pathlib import Path

# Ensure common module is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from common import config
from common.errors import ErrorKind, ServiceError, validation_error
from common.response import errorResponse, jsonResponse
from common.store import DynamoStore
from authz.cache import CapabilityCache
from authz.capabilities import Capability
from authz.service import AuthorizationService, Principal
from clubs.club_repository import ClubRepository
from clubs.invitation_repository import InvitationRepository
from clubs.membership_repository import MembershipRepository
from clubs.profiles import ProfileLookup
from clubs.services import ClubService, InvitationService, MembershipService

logger = config.get_logger(__name__)

TABLE_NAME = config.TABLE_NAME

# Lives for the lifetime of the Lambda container.
CAPABILITY_CACHE = CapabilityCache()

CLUB_PATH = re.compile(r"^/clubs/([^/]+)$")
MEMBERS_PATH = re.compile(r"^/clubs/([^/]+)/members$")
MEMBER_PATH = re.compile(r"^/clubs/([^/]+)/members/([^/]+)$")
REQUEST_PATH = re.compile(r"^/clubs/([^/]+)/requests/([^/]+)$")
INVITATIONS_PATH = re.compile(r"^/clubs/([^/]+)/invitations$")
INVITATION_PATH = re.compile(r"^/invitations/([^/]+)$")


def _parseGroups(raw_groups):
    groups = []
    if isinstance(raw_groups, list):
        groups = [str(g) for g in raw_groups]
    elif isinstance(raw_groups, str) and raw_groups:
        # Cognito sometimes returns groups as a JSON-ish string like "[admin]"
        try:
            parsed = json.loads(raw_groups)
            groups = [str(g) for g in parsed] if isinstance(parsed, list) else [str(parsed)]
        except ValueError:
            for p in raw_groups.split(","):
                g = p.strip().strip("[]\"'")
                if g:
                    groups.append(g)
    return groups


def getUserInfo(event):
    """Extract user info from Cognito authorizer context."""
    authorizer = event.get("requestContext", {}).get("authorizer", {})
    claims = authorizer.get("jwt", {}).get("claims", {})
    return {
        "userId": claims.get("sub", ""),
        "email": claims.get("email", ""),
        "groups": _parseGroups(claims.get("cognito:groups")),
    }


def getPrincipal(event):
    """Principal for authorization: admin group -> system role admin."""
    user = getUserInfo(event)
    if not user["userId"]:
        return Principal.anonymous()
    role = "admin" if "admin" in user["groups"] else "user"
    return Principal(user_id=user["userId"], role=role, is_authenticated=True)


def _getStore():
    return DynamoStore(TABLE_NAME)


def _buildServices(store=None):
    store = store or _getStore()
    clubs = ClubRepository(store)
    profiles = ProfileLookup(store)
    memberships = MembershipRepository(store, profiles=profiles)
    authz = AuthorizationService(cache=CAPABILITY_CACHE, memberships=memberships)
    return {
        "authz": authz,
        "clubs": ClubService(clubs, memberships=memberships, authz=authz),
        "memberships": MembershipService(memberships, clubs, authz=authz),
        "invitations": InvitationService(
            InvitationRepository(store), memberships, clubs, profiles=profiles, authz=authz,
        ),
    }


def _body(event):
    raw = event.get("body") or "{}"
    if event.get("isBase64Encoded"):
        import base64
        raw = base64.b64decode(raw).decode("utf-8")
    try:
        body = json.loads(raw)
    except ValueError:
        raise validation_error("Request body must be JSON")
    if not isinstance(body, dict):
        raise validation_error("Request body must be a JSON object")
    return body


def _query(event):
    return event.get("queryStringParameters") or {}


def _requireAuth(event):
    """Return (principal, None) if logged in, else (None, error_response)."""
    principal = getPrincipal(event)
    if not principal.is_authenticated:
        return None, jsonResponse({"error": "Unauthorized"}, 401)
    return principal, None


def listClubs(event, services):
    """GET /clubs - Public club directory, name order."""
    qs = _query(event)
    result = services["clubs"].list_clubs(status=qs.get("status"), cursor=qs.get("cursor"), limit=qs.get("limit"))
    return jsonResponse(result)


def getClub(event, services, club_id):
    """GET /clubs/{id}"""
    return jsonResponse(services["clubs"].get_club(club_id))


def createClub(event, services):
    """POST /clubs - Create club; caller becomes owner."""
    principal, err = _requireAuth(event)
    if err:
        return err
    # Club ids are always generated server-side.
    club = services["clubs"].create_club(_body(event), creator_id=principal.user_id)
    return jsonResponse(club, 201)


def updateClub(event, services, club_id):
    """PUT /clubs/{id} - Owner (or platform admin) only."""
    principal, err = _requireAuth(event)
    if err:
        return err
    services["authz"].require_club(principal, club_id, Capability.MANAGE_CLUB_SETTINGS)
    return jsonResponse(services["clubs"].update_club(club_id, _body(event)))


def joinClub(event, services, club_id):
    """POST /clubs/{id}/members - Request to join."""
    principal, err = _requireAuth(event)
    if err:
        return err
    membership = services["memberships"].join_club(club_id, principal.user_id, _body(event))
    return jsonResponse(membership, 201)


def leaveClub(event, services, club_id):
    """DELETE /clubs/{id}/members/me"""
    principal, err = _requireAuth(event)
    if err:
        return err
    return jsonResponse(services["memberships"].leave_club(club_id, principal.user_id))


def listClubMembers(event, services, club_id):
    """GET /clubs/{id}/members"""
    principal, err = _requireAuth(event)
    if err:
        return err
    services["authz"].require_club(principal, club_id, Capability.VIEW_CLUB_MEMBERS)
    qs = _query(event)
    result = services["memberships"].list_club_members(
        club_id,
        role=qs.get("role"),
        status=qs.get("status"),
        cursor=qs.get("cursor"),
        limit=qs.get("limit"),
    )
    return jsonResponse(result)


def updateMemberRole(event, services, club_id, user_id):
    """PUT /clubs/{id}/members/{userId} - body {role, reason?}"""
    principal, err = _requireAuth(event)
    if err:
        return err
    services["authz"].require_club(principal, club_id, Capability.MANAGE_ADMINS)
    body = _body(event)
    membership = services["memberships"].update_member_role(
        club_id, user_id, body.get("role"), principal.user_id, reason=body.get("reason"),
    )
    return jsonResponse(membership)


def processJoinRequest(event, services, club_id, user_id):
    """POST /clubs/{id}/requests/{userId} - body {action: approve|reject, reason?}"""
    principal, err = _requireAuth(event)
    if err:
        return err
    services["authz"].require_club(principal, club_id, Capability.MANAGE_JOIN_REQUESTS)
    body = _body(event)
    membership = services["memberships"].process_join_request(
        club_id, user_id, body.get("action"), principal.user_id, reason=body.get("reason"),
    )
    return jsonResponse(membership)


def removeMember(event, services, club_id, user_id):
    """DELETE /clubs/{id}/members/{userId} - optional ?reason="""
    principal, err = _requireAuth(event)
    if err:
        return err
    services["authz"].require_club(principal, club_id, Capability.REMOVE_MEMBERS)
    membership = services["memberships"].remove_member(club_id, user_id, principal, reason=_query(event).get("reason"))
    return jsonResponse(membership)


def getMyMemberships(event, services):
    """GET /users/me/memberships"""
    principal, err = _requireAuth(event)
    if err:
        return err
    memberships = services["memberships"].get_user_memberships(principal.user_id, status=_query(event).get("status"))
    return jsonResponse({"memberships": memberships})


def inviteMember(event, services, club_id):
    """POST /clubs/{id}/invitations - body {userId, role?, message?}"""
    principal, err = _requireAuth(event)
    if err:
        return err
    services["authz"].require_club(principal, club_id, Capability.INVITE_MEMBERS)
    invitation = services["invitations"].invite(club_id, _body(event), principal)
    return jsonResponse(invitation, 201)


def listClubInvitations(event, services, club_id):
    """GET /clubs/{id}/invitations"""
    principal, err = _requireAuth(event)
    if err:
        return err
    services["authz"].require_club(principal, club_id, Capability.INVITE_MEMBERS)
    qs = _query(event)
    result = services["invitations"].list_club_invitations(
        club_id, status=qs.get("status"), cursor=qs.get("cursor"), limit=qs.get("limit"),
    )
    return jsonResponse(result)


def getMyInvitations(event, services):
    """GET /users/me/invitations"""
    principal, err = _requireAuth(event)
    if err:
        return err
    qs = _query(event)
    result = services["invitations"].list_user_invitations(
        principal.user_id, status=qs.get("status"), cursor=qs.get("cursor"), limit=qs.get("limit"),
    )
    return jsonResponse(result)


def processInvitation(event, services, invitation_id):
    """POST /invitations/{id} - body {action: accept|decline}; invitee only."""
    principal, err = _requireAuth(event)
    if err:
        return err
    result = services["invitations"].process_invitation(invitation_id, _body(event).get("action"), principal.user_id)
    return jsonResponse(result)


def cancelInvitation(event, services, invitation_id):
    """DELETE /invitations/{id}"""
    principal, err = _requireAuth(event)
    if err:
        return err
    return jsonResponse(services["invitations"].cancel_invitation(invitation_id, principal))


def _route(event, method, path):
    if method == "GET" and path == "/clubs":
        return listClubs(event, _buildServices())
    if method == "POST" and path == "/clubs":
        return createClub(event, _buildServices())
    if method == "GET" and path == "/users/me/memberships":
        return getMyMemberships(event, _buildServices())
    if method == "GET" and path == "/users/me/invitations":
        return getMyInvitations(event, _buildServices())

    m = CLUB_PATH.match(path)
    if m:
        if method == "GET":
            return getClub(event, _buildServices(), m.group(1))
        if method == "PUT":
            return updateClub(event, _buildServices(), m.group(1))
    m = MEMBERS_PATH.match(path)
    if m:
        if method == "GET":
            return listClubMembers(event, _buildServices(), m.group(1))
        if method == "POST":
            return joinClub(event, _buildServices(), m.group(1))
    m = MEMBER_PATH.match(path)
    if m:
        club_id, user_id = m.group(1), m.group(2)
        if method == "DELETE" and user_id == "me":
            return leaveClub(event, _buildServices(), club_id)
        if method == "PUT":
            return updateMemberRole(event, _buildServices(), club_id, user_id)
        if method == "DELETE":
            return removeMember(event, _buildServices(), club_id, user_id)
    m = REQUEST_PATH.match(path)
    if m and method == "POST":
        return processJoinRequest(event, _buildServices(), m.group(1), m.group(2))
    m = INVITATIONS_PATH.match(path)
    if m:
        if method == "GET":
            return listClubInvitations(event, _buildServices(), m.group(1))
        if method == "POST":
            return inviteMember(event, _buildServices(), m.group(1))
    m = INVITATION_PATH.match(path)
    if m:
        if method == "POST":
            return processInvitation(event, _buildServices(), m.group(1))
        if method == "DELETE":
            return cancelInvitation(event, _buildServices(), m.group(1))
    return None


def handler(event, context):
    """Route request by path; return JSON with CORS headers."""
    try:
        path = event.get("rawPath", "")
        if not path:
            path = event.get("requestContext", {}).get("http", {}).get("path", "")
        method = event.get("requestContext", {}).get("http", {}).get("method", "GET")

        logger.info("path=%s, method=%s", path, method)

        if method == "GET" and path == "/health":
            return jsonResponse({"ok": True})
        if method == "OPTIONS":
            # CORS preflight
            return jsonResponse({}, 200)
        if not TABLE_NAME:
            return jsonResponse({"error": "TABLE_NAME not set"}, 500)

        response = _route(event, method, path)
        if response is None:
            return jsonResponse({"error": "Not Found", "path": path, "method": method}, 404)
        return response
    except ServiceError as e:
        if e.kind == ErrorKind.INTERNAL:
            logger.exception("handler internal error: %s", e.message)
        else:
            logger.info("request failed kind=%s code=%s message=%s", e.kind.name, e.code, e.message)
        return errorResponse(e)
    except Exception as e:
        logger.exception("handler error: %s", str(e))
        return jsonResponse({"error": "INTERNAL_ERROR", "message": "Internal server error"}, 500)
