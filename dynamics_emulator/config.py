"""
Dynamics emulator configuration. Lab values; override from the environment.
Plays both the Azure AD token endpoint and the Dynamics OData /data service.
"""
import os

# Accepted credentials for the password grant
TENANT = os.environ.get("EMULATOR_TENANT", "contoso.onmicrosoft.com")
CLIENT_ID = os.environ.get("EMULATOR_CLIENT_ID", "emulator-client")
USERNAME = os.environ.get("EMULATOR_USERNAME", "admin@contoso.onmicrosoft.com")
PASSWORD = os.environ.get("EMULATOR_PASSWORD", "emulator-password")

# Resource (audience) the issued tokens are valid for; data lives under {RESOURCE}/data
RESOURCE = os.environ.get("EMULATOR_RESOURCE", "https://contoso.operations.dynamics.com").rstrip("/")

# HS256 secret for access tokens (lab only)
SIGNING_SECRET = os.environ.get("EMULATOR_SIGNING_SECRET", "dynamics-emulator-signing-secret-change-me")

# Access token lifetime (seconds)
ACCESS_TOKEN_EXPIRES = int(os.environ.get("EMULATOR_ACCESS_TOKEN_EXPIRES", "3599"))

# Entity sets served under /data; anything else is 404
ENTITY_SETS = {
    name.strip()
    for name in os.environ.get("EMULATOR_ENTITY_SETS", "Customers,Vendors,SalesOrderHeaders").split(",")
    if name.strip()
}
