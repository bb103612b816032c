"""
Dashboard API Client - Basic Usage Example

Reads DASHBOARD_API_BASE_URL from the environment, logs in, and lists the
chart of accounts. Token refresh, queueing and retries happen inside the
client.
"""

import asyncio
import logging
import os

from dashboard_api import (
    ClientConfig,
    DashboardApiError,
    FileStorage,
    UnauthenticatedError,
    create_api_client,
)


def on_unauthenticated(error: UnauthenticatedError) -> None:
    print(f"Session ended ({error.message}); send the user back to the sign-in page.")


async def main() -> None:
    logging.basicConfig(level=logging.INFO)

    config = ClientConfig.from_env(
        storage=FileStorage(os.path.expanduser("~/.dashboard_api/tokens.json")),
        on_unauthenticated=on_unauthenticated,
    )

    async with create_api_client(config) as client:
        if not client.is_authenticated():
            await client.auth.login(
                os.environ.get("DASHBOARD_EMAIL", "user@example.com"),
                os.environ.get("DASHBOARD_PASSWORD", "password"),
            )

        try:
            accounts = await client.list("/accounting/accounts/", params={"is_active": True})
            print(f"{accounts.count} accounts")
            for account in accounts.results:
                print(f"  {account['code']}  {account['name']}")

            # Many concurrent calls share one refresh and at most max_concurrent slots
            pages = await asyncio.gather(
                *(client.get("/projects/", {"page": page}) for page in range(1, 4))
            )
            print(f"Fetched {len(pages)} project pages")
        except DashboardApiError as e:
            print(f"Request failed: {e.code} {e.message}")


if __name__ == "__main__":
    asyncio.run(main())
