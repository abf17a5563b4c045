"""Block Kit and text builders for member lifecycle threads."""


class LifecycleMessages:
    """Factory for the messages posted into member threads."""

    @staticmethod
    def bounce_thread_summary(
        name: str | None,
        email: str,
        phone: str | None,
        period_key: str,
    ) -> tuple[str, list[dict]]:
        """Root message of a monthly failed-payment thread."""
        display = name or email
        text = f":credit_card: Failed payment: {display} ({email}) for {period_key}"
        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"💳 Failed payment: {display}", "emoji": True},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Email:*\n{email}"},
                    {"type": "mrkdwn", "text": f"*Phone:*\n{phone or 'N/A'}"},
                    {"type": "mrkdwn", "text": f"*Billing period:*\n{period_key}"},
                ],
            },
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": "Charge attempts, recovery and offboarding are tracked in this thread."}
                ],
            },
        ]
        return text, blocks

    @staticmethod
    def cancel_thread_summary(
        name: str | None,
        email: str,
        date_key: str,
    ) -> tuple[str, list[dict]]:
        display = name or email
        text = f":x: Subscription canceled: {display} ({email}) on {date_key}"
        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"❌ Subscription canceled: {display}", "emoji": True},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Email:*\n{email}"},
                    {"type": "mrkdwn", "text": f"*Canceled on:*\n{date_key}"},
                ],
            },
        ]
        return text, blocks

    @staticmethod
    def attempt_failed(attempt: int, amount: str) -> str:
        return f":warning: Attempt #{attempt}: charge failed — {amount}"

    @staticmethod
    def recovery_template(first_name: str | None, amount: str, update_url: str) -> str:
        """Copy-paste message for the team to send to the member."""
        greeting = f"Hi {first_name}," if first_name else "Hi there,"
        return (
            ":envelope: *Payment recovery message (send to member):*\n"
            f">{greeting}\n"
            f">Heads up, your latest membership payment of {amount} didn't go through. "
            "This usually happens when a card expires or the bank flags the charge.\n"
            f">You can update your card here: {update_url}\n"
            ">Let us know if anything looks off and we'll sort it out together."
        )

    @staticmethod
    def recovery_confirmation(amount: str | None) -> str:
        if amount:
            return f":white_check_mark: Payment recovered — {amount} charged successfully."
        return ":white_check_mark: Payment recovered."

    @staticmethod
    def delinquency_notice(status: str | None) -> str:
        suffix = f" (status: {status})" if status else ""
        return f":rotating_light: Subscription marked delinquent{suffix}."

    @staticmethod
    def cancellation_notice(name: str | None, email: str, status: str | None) -> str:
        suffix = f" (status: {status})" if status else ""
        return f":x: {name or email} canceled their subscription{suffix}."
