"""
Swagger/OpenAPI configuration for the law firm booking API
"""

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec",
            "route": "/apispec.json",
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/api/docs",
}

SWAGGER_TEMPLATE = {
    "swagger": "2.0",
    "info": {
        "title": "Law Firm Booking API",
        "description": "Authentication, firm catalogue, consultation booking with slot inventory, and booking notifications",
        "contact": {"email": "info@goldenfirmiana.com.au"},
        "version": "1.0.0",
    },
    "host": "",
    "basePath": "/",
    "schemes": ["http", "https"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": 'JWT Authorization header using the Bearer scheme. Example: "Authorization: Bearer {token}"',
        }
    },
    "security": [{"Bearer": []}],
    "tags": [
        {"name": "Authentication", "description": "WeChat, guest and password login"},
        {"name": "Users", "description": "Current user profile and bookings"},
        {"name": "Firms", "description": "Law firm catalogue"},
        {"name": "Services", "description": "Legal services offered by firms"},
        {"name": "Consultations", "description": "Consultation booking and status"},
        {"name": "Appointments", "description": "Legacy web form bookings"},
        {"name": "Admin", "description": "Catalogue maintenance and consultation time inventory"},
        {"name": "Utility", "description": "Status and health checks"},
    ],
    "definitions": {
        "Error": {
            "type": "object",
            "properties": {
                "status": {"type": "string", "example": "error"},
                "error": {"type": "string", "example": "validation_error"},
                "message": {"type": "string"},
                "field": {"type": "string"},
                "details": {"type": "string"},
            },
        },
        "User": {
            "type": "object",
            "properties": {
                "id": {"type": "string"},
                "username": {"type": "string"},
                "displayName": {"type": "string"},
                "avatarUrl": {"type": "string"},
                "email": {"type": "string", "format": "email"},
                "phone": {"type": "string"},
                "role": {"type": "string", "enum": ["user", "admin"]},
                "provider": {
                    "type": "string",
                    "enum": ["wechat", "anonymous", "password", "admin"],
                },
                "metadata": {"type": "object"},
                "lastLoginAt": {"type": "string", "format": "date-time"},
                "createdAt": {"type": "string", "format": "date-time"},
                "updatedAt": {"type": "string", "format": "date-time"},
            },
        },
        "Session": {
            "type": "object",
            "properties": {
                "token": {"type": "string"},
                "user": {"$ref": "#/definitions/User"},
            },
        },
        "Firm": {
            "type": "object",
            "properties": {
                "id": {"type": "string"},
                "name": {"type": "string"},
                "slug": {"type": "string"},
                "city": {"type": "string"},
                "address": {"type": "string"},
                "phone": {"type": "string"},
                "email": {"type": "string"},
                "website": {"type": "string"},
                "practiceAreas": {"type": "array", "items": {"type": "string"}},
                "tags": {"type": "array", "items": {"type": "string"}},
            },
        },
        "BookingRequest": {
            "type": "object",
            "required": ["name", "phone", "firm_id", "service_id", "time"],
            "properties": {
                "name": {"type": "string", "example": "Zhang San"},
                "phone": {"type": "string", "example": "13800138000"},
                "email": {"type": "string", "format": "email"},
                "firm_id": {"type": "string", "example": "1"},
                "service_id": {"type": "string", "example": "2"},
                "time": {
                    "type": "string",
                    "format": "date-time",
                    "example": "2030-01-01T02:00:00Z",
                },
                "remark": {"type": "string"},
            },
        },
        "NotificationOutcome": {
            "type": "object",
            "properties": {
                "status": {"type": "string", "enum": ["fulfilled", "rejected"]},
                "to": {"type": "string"},
                "detail": {"type": "object"},
            },
        },
        "BookingCreated": {
            "type": "object",
            "properties": {
                "status": {"type": "string", "example": "ok"},
                "message": {"type": "string"},
                "consultationId": {"type": "string"},
                "emailSummary": {
                    "type": "object",
                    "properties": {
                        "notifications": {
                            "type": "array",
                            "items": {"$ref": "#/definitions/NotificationOutcome"},
                        },
                        "clientConfirmation": {
                            "$ref": "#/definitions/NotificationOutcome"
                        },
                    },
                },
            },
        },
        "Consultation": {
            "type": "object",
            "properties": {
                "id": {"type": "string"},
                "name": {"type": "string"},
                "phone": {"type": "string"},
                "email": {"type": "string"},
                "firmId": {"type": "string"},
                "firmName": {"type": "string"},
                "serviceId": {"type": "string"},
                "serviceName": {"type": "string"},
                "time": {"type": "string", "format": "date-time"},
                "remark": {"type": "string"},
                "status": {
                    "type": "string",
                    "enum": ["pending", "contacted", "converted", "cancelled"],
                },
                "source": {"type": "string"},
                "createdAt": {"type": "string", "format": "date-time"},
            },
        },
        "FirmPayload": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "example": "Golden Firmiana Partners"},
                "slug": {"type": "string", "example": "golden-firmiana"},
                "city": {"type": "string"},
                "address": {"type": "string"},
                "phone": {"type": "string"},
                "email": {"type": "string", "format": "email"},
                "contact_email": {"type": "string", "format": "email"},
                "website": {"type": "string"},
                "description": {"type": "string"},
                "practice_areas": {"type": "array", "items": {"type": "string"}},
                "tags": {"type": "array", "items": {"type": "string"}},
                "lawyers": {"type": "array", "items": {"type": "object"}},
            },
        },
        "ServicePayload": {
            "type": "object",
            "properties": {
                "title": {"type": "string", "example": "Property Settlement"},
                "description": {"type": "string"},
                "category": {"type": "string", "example": "family"},
                "price": {"type": "number", "example": 300},
                "status": {"type": "string", "enum": ["active", "inactive"]},
                "firm_id": {"type": "string", "description": "Legacy single owning firm"},
                "firm_ids": {"type": "array", "items": {"type": "string"}},
            },
        },
        "ListedService": {
            "type": "object",
            "properties": {
                "id": {"type": "string"},
                "title": {"type": "string"},
                "description": {"type": "string"},
                "category": {"type": "string"},
                "price": {"type": "number"},
                "status": {"type": "string"},
                "firmId": {"type": "string"},
                "firmName": {"type": "string"},
                "firmAddress": {"type": "string"},
                "firmIds": {"type": "array", "items": {"type": "string"}},
                "availableTimes": {
                    "type": "array",
                    "items": {"type": "string", "format": "date-time"},
                },
            },
        },
        "SlotPayload": {
            "type": "object",
            "required": ["times"],
            "properties": {
                "times": {
                    "type": "array",
                    "items": {"type": "string", "format": "date-time"},
                    "example": ["2030-01-01T02:00:00Z", "2030-01-01T03:00:00Z"],
                }
            },
        },
    },
}
