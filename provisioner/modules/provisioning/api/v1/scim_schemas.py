from __future__ import annotations

from typing import Any

SCIM_ERROR_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:Error"
SCIM_LIST_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
SCIM_PATCH_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"
SCIM_USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
SCIM_GROUP_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:Group"
SCIM_SCHEMA_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:Schema"
SCIM_RESOURCE_TYPE_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:ResourceType"
SCIM_SERVICE_PROVIDER_CONFIG_SCHEMA = (
    "urn:ietf:params:scim:schemas:core:2.0:ServiceProviderConfig"
)


def _string_attr(name: str, description: str, **extra: Any) -> dict[str, Any]:
    attr: dict[str, Any] = {
        "name": name,
        "type": "string",
        "multiValued": False,
        "description": description,
        "required": False,
        "mutability": "readWrite",
        "returned": "default",
    }
    attr.update(extra)
    return attr


def scim_user_schema_resource(*, base_path: str) -> dict[str, Any]:
    return {
        "schemas": [SCIM_SCHEMA_SCHEMA],
        "id": SCIM_USER_SCHEMA,
        "name": "User",
        "description": "User Account",
        "attributes": [
            _string_attr(
                "userName",
                "Unique identifier for the User.",
                required=True,
                caseExact=False,
                uniqueness="server",
            ),
            {
                "name": "name",
                "type": "complex",
                "multiValued": False,
                "description": "The components of the user's real name.",
                "required": False,
                "subAttributes": [
                    _string_attr(
                        "formatted",
                        "The full name, including all middle names, titles, and suffixes.",
                    ),
                    _string_attr("familyName", "The family name of the User."),
                    _string_attr("givenName", "The given name of the User."),
                ],
            },
            _string_attr(
                "externalId",
                "Identifier for the User as defined by the provisioning client.",
                caseExact=True,
            ),
            {
                "name": "emails",
                "type": "complex",
                "multiValued": True,
                "description": "Email addresses for the user.",
                "required": False,
                "subAttributes": [
                    _string_attr("value", "Email address for the user."),
                    _string_attr(
                        "type",
                        "A label indicating the attribute's function.",
                        canonicalValues=["work", "home", "other"],
                    ),
                    {
                        "name": "primary",
                        "type": "boolean",
                        "multiValued": False,
                        "description": "Whether this is the preferred email address.",
                        "required": False,
                        "mutability": "readWrite",
                        "returned": "default",
                    },
                ],
            },
            {
                "name": "active",
                "type": "boolean",
                "multiValued": False,
                "description": "A Boolean value indicating the user's administrative status.",
                "required": False,
                "mutability": "readWrite",
                "returned": "default",
            },
        ],
        "meta": {
            "resourceType": "Schema",
            "location": f"{base_path}/Schemas/{SCIM_USER_SCHEMA}",
        },
    }


def scim_group_schema_resource(*, base_path: str) -> dict[str, Any]:
    return {
        "schemas": [SCIM_SCHEMA_SCHEMA],
        "id": SCIM_GROUP_SCHEMA,
        "name": "Group",
        "description": "Group",
        "attributes": [
            _string_attr(
                "displayName",
                "A human-readable name for the Group.",
                required=True,
                caseExact=False,
                uniqueness="server",
            ),
            _string_attr(
                "externalId",
                "Identifier for the Group as defined by the provisioning client.",
                caseExact=True,
            ),
            {
                "name": "members",
                "type": "complex",
                "multiValued": True,
                "description": "A list of members of the Group.",
                "required": False,
                "mutability": "readWrite",
                "returned": "default",
                "subAttributes": [
                    _string_attr(
                        "value",
                        "Identifier of the member of this Group.",
                        mutability="immutable",
                    ),
                    {
                        "name": "$ref",
                        "type": "reference",
                        "multiValued": False,
                        "description": "The URI of the corresponding 'User' resource.",
                        "required": False,
                        "mutability": "immutable",
                        "returned": "default",
                    },
                    _string_attr(
                        "display",
                        "A human-readable name for the member.",
                        mutability="immutable",
                    ),
                ],
            },
        ],
        "meta": {
            "resourceType": "Schema",
            "location": f"{base_path}/Schemas/{SCIM_GROUP_SCHEMA}",
        },
    }


def service_provider_config(*, base_path: str, max_results: int) -> dict[str, Any]:
    return {
        "schemas": [SCIM_SERVICE_PROVIDER_CONFIG_SCHEMA],
        "patch": {"supported": True},
        "bulk": {"supported": False, "maxOperations": 0, "maxPayloadSize": 0},
        "filter": {"supported": True, "maxResults": max_results},
        "changePassword": {"supported": False},
        "sort": {"supported": False},
        "etag": {"supported": False},
        "authenticationSchemes": [
            {
                "type": "oauthbearertoken",
                "name": "OAuth Bearer Token",
                "description": "Authentication scheme using the OAuth Bearer Token standard.",
                "specUri": "https://www.rfc-editor.org/rfc/rfc6750",
                "primary": True,
            }
        ],
        "meta": {
            "location": f"{base_path}/ServiceProviderConfig",
            "resourceType": "ServiceProviderConfig",
        },
    }


def resource_types_response(*, base_path: str) -> dict[str, Any]:
    resources = [
        {
            "schemas": [SCIM_RESOURCE_TYPE_SCHEMA],
            "id": "User",
            "name": "User",
            "endpoint": "/Users",
            "description": "User Account",
            "schema": SCIM_USER_SCHEMA,
            "meta": {
                "location": f"{base_path}/ResourceTypes/User",
                "resourceType": "ResourceType",
            },
        },
        {
            "schemas": [SCIM_RESOURCE_TYPE_SCHEMA],
            "id": "Group",
            "name": "Group",
            "endpoint": "/Groups",
            "description": "Group",
            "schema": SCIM_GROUP_SCHEMA,
            "meta": {
                "location": f"{base_path}/ResourceTypes/Group",
                "resourceType": "ResourceType",
            },
        },
    ]
    return {
        "schemas": [SCIM_LIST_SCHEMA],
        "totalResults": len(resources),
        "startIndex": 1,
        "itemsPerPage": len(resources),
        "Resources": resources,
    }
