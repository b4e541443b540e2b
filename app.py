import os
import secrets

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from slack_bolt import App
from slack_bolt.adapter.fastapi import SlackRequestHandler
from starlette.concurrency import run_in_threadpool

from groupbot.logger import logger
from groupbot.config import (
    ADMIN_PASSWORD,
    ADMIN_USERNAME,
    DATABASE_CLEANUP_DAYS,
    validate_environment_variables,
)
from groupbot.commands import dispatch_command
from groupbot.completion import CompletionService, build_client
from groupbot.db import get_db
from groupbot.orchestrator import ConversationOrchestrator
from groupbot.slack_adapter import (
    FEEDBACK_ACTION_BAD,
    FEEDBACK_ACTION_GOOD,
    AdminCache,
    SlackMessenger,
    feedback_from_action,
    feedback_from_reaction,
    membership_from_event,
    message_from_event,
)
from groupbot.utils import sanitize_slack_id

# Validate environment variables at startup
validate_environment_variables()

# Slack app setup
slack_app = App(
    token=os.environ["SLACK_BOT_TOKEN"],
    signing_secret=os.environ["SLACK_SIGNING_SECRET"],
    # Ensure Slack gets an ACK within 3 seconds even if processing is longer
    process_before_response=True,
)

fastapi_app = FastAPI()
handler = SlackRequestHandler(slack_app)
security = HTTPBasic()

bot_user_id = slack_app.client.auth_test()["user_id"]
messenger = SlackMessenger(slack_app.client)
admins = AdminCache(slack_app.client)
orchestrator = ConversationOrchestrator(
    db=get_db(),
    messenger=messenger,
    completion=CompletionService(build_client()),
    bot_user_id=bot_user_id,
)
orchestrator.interactions.cleanup_old_data(DATABASE_CLEANUP_DAYS)


@slack_app.event("message")
def handle_message(event, say, client):
    message = message_from_event(event, client, bot_user_id, admins)
    if message is None:
        return

    reply = dispatch_command(orchestrator, message)
    if reply is None:
        orchestrator.handle_message(message)
        return

    if reply.document is not None:
        messenger.upload_document(message.chat_id, reply.document_bytes(), reply.filename, reply.text)
        return
    say(text=reply.text, thread_ts=message.thread_id)


# Mentions also arrive as `message` events, which is where they are handled
@slack_app.event("app_mention")
def handle_mention(event):
    logger.debug("Mention in %s handled via message event", event.get("channel"))


@slack_app.event("reaction_added")
def handle_reaction(event, client):
    feedback = feedback_from_reaction(event, bot_user_id)
    if feedback is None:
        return
    outcome = orchestrator.handle_feedback(feedback)
    if outcome.message and feedback.user_id:
        client.chat_postEphemeral(channel=feedback.chat_id, user=feedback.user_id, text=outcome.message)


def _handle_feedback_button(ack, body, respond):
    ack()
    feedback = feedback_from_action(body)
    if feedback is None:
        return
    outcome = orchestrator.handle_feedback(feedback)
    if outcome.message:
        respond(text=outcome.message, response_type="ephemeral", replace_original=False)


slack_app.action(FEEDBACK_ACTION_GOOD)(_handle_feedback_button)
slack_app.action(FEEDBACK_ACTION_BAD)(_handle_feedback_button)


@slack_app.event("member_joined_channel")
def handle_member_joined(event, client):
    membership = membership_from_event(event, client, bot_user_id)
    if membership is not None:
        orchestrator.handle_membership(membership)


def verify_admin(credentials: HTTPBasicCredentials = Depends(security)):
    """Verify admin credentials for the HTTP endpoints"""
    if not ADMIN_PASSWORD:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    valid_user = secrets.compare_digest(credentials.username, ADMIN_USERNAME)
    valid_password = secrets.compare_digest(credentials.password, ADMIN_PASSWORD)
    if not (valid_user and valid_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username


@fastapi_app.post("/slack/events")
async def slack_events(request: Request):
    # Delegate to Slack Bolt FastAPI handler
    return await handler.handle(request)


@fastapi_app.get("/")
async def ping():
    return JSONResponse({"status": "ok"})


@fastapi_app.get("/admin/groups/{group_id}/export")
async def export_group(group_id: str, username: str = Depends(verify_admin)):
    try:
        group_id = sanitize_slack_id(group_id, "group_id")
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    # Offload MongoDB reads to thread pool so we don't block the event loop.
    document = await run_in_threadpool(orchestrator.export_group, group_id, True)
    if document["group"] is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Group not found")
    logger.info("Export of %s requested by %s", group_id, username)
    return JSONResponse(document)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:fastapi_app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 3000)),
        reload=os.getenv("ENV") != "prod",
    )
