"""
channels — Per-channel delivery backends.

Each channel module exposes:
    async send(message, target, ctx) → DeliveryAttempt

social exposes one sender per network (post_twitter, post_facebook,
post_instagram); sms exposes send_twilio and send_clickatell.

Channels never raise; failures come back as a FAILED attempt.
"""
