"""Schema v1 - Initial PipaPal schema.

This version includes tables for:
- Users and login sessions
- Waste collections and their environmental impact ledger
- Badges, activities and eco tips
- Materials marketplace interests
- Direct chat messages
- Feedback and recycling centres
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'users',
            'columns': [
                {'name': 'id', 'type': 'SERIAL', 'primary_key': True},
                {'name': 'username', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'email', 'type': 'TEXT', 'nullable': False},
                {'name': 'password', 'type': 'TEXT', 'nullable': False},
                {'name': 'full_name', 'type': 'TEXT', 'nullable': False},
                {'name': 'role', 'type': 'TEXT', 'nullable': False, 'default': "'household'"},
                {'name': 'address', 'type': 'TEXT'},
                {'name': 'phone', 'type': 'TEXT'},
                {'name': 'sustainability_score', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'onboarding_completed', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'google_uid', 'type': 'TEXT'},
                {'name': 'organization_type', 'type': 'TEXT'},
                {'name': 'organization_name', 'type': 'TEXT'},
                {'name': 'contact_person_name', 'type': 'TEXT'},
                {'name': 'contact_person_position', 'type': 'TEXT'},
                {'name': 'contact_person_phone', 'type': 'TEXT'},
                {'name': 'contact_person_email', 'type': 'TEXT'},
                {'name': 'is_certified', 'type': 'BOOLEAN'},
                {'name': 'certification_details', 'type': 'TEXT'},
                {'name': 'business_name', 'type': 'TEXT'},
                {'name': 'business_type', 'type': 'TEXT'},
                {'name': 'business_registration', 'type': 'TEXT'},
                {'name': 'business_description', 'type': 'TEXT'},
                {'name': 'service_area', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_users_email', 'columns': ['email'], 'unique': True},
                {'name': 'idx_users_role', 'columns': ['role']},
                {'name': 'idx_users_google_uid', 'columns': ['google_uid'], 'unique': True,
                 'where': 'google_uid IS NOT NULL'}
            ]
        },
        {
            'name': 'auth_sessions',
            'columns': [
                {'name': 'token', 'type': 'TEXT', 'primary_key': True},
                {'name': 'user_id', 'type': 'INT', 'nullable': False},
                {'name': 'expires_at', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'revoked', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_sessions_user', 'columns': ['user_id']}
            ]
        },
        {
            'name': 'collections',
            'columns': [
                {'name': 'id', 'type': 'SERIAL', 'primary_key': True},
                {'name': 'user_id', 'type': 'INT', 'nullable': False},
                {'name': 'collector_id', 'type': 'INT'},
                {'name': 'waste_type', 'type': 'TEXT', 'nullable': False},
                {'name': 'waste_description', 'type': 'TEXT'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'scheduled'"},
                {'name': 'scheduled_date', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'completed_date', 'type': 'TIMESTAMPTZ'},
                {'name': 'waste_amount', 'type': 'DOUBLE PRECISION'},
                {'name': 'address', 'type': 'TEXT', 'nullable': False},
                {'name': 'location', 'type': 'JSONB'},
                {'name': 'notes', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)'},
                {'columns': ['collector_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_collections_user', 'columns': ['user_id']},
                {'name': 'idx_collections_collector', 'columns': ['collector_id']},
                {'name': 'idx_collections_status', 'columns': ['status']}
            ]
        },
        {
            'name': 'impacts',
            'columns': [
                {'name': 'id', 'type': 'SERIAL', 'primary_key': True},
                {'name': 'user_id', 'type': 'INT', 'nullable': False},
                {'name': 'collection_id', 'type': 'INT'},
                {'name': 'water_saved', 'type': 'DOUBLE PRECISION', 'nullable': False, 'default': '0'},
                {'name': 'co2_reduced', 'type': 'DOUBLE PRECISION', 'nullable': False, 'default': '0'},
                {'name': 'trees_equivalent', 'type': 'DOUBLE PRECISION', 'nullable': False, 'default': '0'},
                {'name': 'energy_conserved', 'type': 'DOUBLE PRECISION', 'nullable': False, 'default': '0'},
                {'name': 'waste_amount', 'type': 'DOUBLE PRECISION', 'nullable': False, 'default': '0'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)'},
                {'columns': ['collection_id'], 'references': 'collections(id)'}
            ],
            'indexes': [
                {'name': 'idx_impacts_user', 'columns': ['user_id']},
                {'name': 'idx_impacts_collection', 'columns': ['collection_id']}
            ]
        },
        {
            'name': 'badges',
            'columns': [
                {'name': 'id', 'type': 'SERIAL', 'primary_key': True},
                {'name': 'user_id', 'type': 'INT', 'nullable': False},
                {'name': 'badge_type', 'type': 'TEXT', 'nullable': False},
                {'name': 'awarded_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_badges_user_type', 'columns': ['user_id', 'badge_type'], 'unique': True}
            ]
        },
        {
            'name': 'eco_tips',
            'columns': [
                {'name': 'id', 'type': 'SERIAL', 'primary_key': True},
                {'name': 'category', 'type': 'TEXT', 'nullable': False},
                {'name': 'title', 'type': 'TEXT', 'nullable': False},
                {'name': 'content', 'type': 'TEXT', 'nullable': False},
                {'name': 'icon', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ]
        },
        {
            'name': 'activities',
            'columns': [
                {'name': 'id', 'type': 'SERIAL', 'primary_key': True},
                {'name': 'user_id', 'type': 'INT', 'nullable': False},
                {'name': 'activity_type', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT', 'nullable': False},
                {'name': 'points', 'type': 'INT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_activities_user_created', 'columns': ['user_id', 'created_at']}
            ]
        },
        {
            'name': 'material_interests',
            'columns': [
                {'name': 'id', 'type': 'SERIAL', 'primary_key': True},
                {'name': 'user_id', 'type': 'INT', 'nullable': False},
                {'name': 'collection_id', 'type': 'INT', 'nullable': False},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'"},
                {'name': 'amount_requested', 'type': 'DOUBLE PRECISION'},
                {'name': 'price_per_kg', 'type': 'DOUBLE PRECISION'},
                {'name': 'message', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)'},
                {'columns': ['collection_id'], 'references': 'collections(id)'}
            ],
            'indexes': [
                {'name': 'idx_interests_user', 'columns': ['user_id']},
                {'name': 'idx_interests_collection', 'columns': ['collection_id']}
            ]
        },
        {
            'name': 'chat_messages',
            'columns': [
                {'name': 'id', 'type': 'SERIAL', 'primary_key': True},
                {'name': 'sender_id', 'type': 'INT', 'nullable': False},
                {'name': 'receiver_id', 'type': 'INT', 'nullable': False},
                {'name': 'content', 'type': 'TEXT', 'nullable': False},
                {'name': 'read', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'timestamp', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['sender_id'], 'references': 'users(id)'},
                {'columns': ['receiver_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_chat_pair', 'columns': ['sender_id', 'receiver_id']},
                {'name': 'idx_chat_unread', 'columns': ['receiver_id'], 'where': 'NOT read'}
            ]
        },
        {
            'name': 'feedback',
            'columns': [
                {'name': 'id', 'type': 'SERIAL', 'primary_key': True},
                {'name': 'user_id', 'type': 'INT', 'nullable': False},
                {'name': 'category', 'type': 'TEXT', 'nullable': False},
                {'name': 'title', 'type': 'TEXT', 'nullable': False},
                {'name': 'content', 'type': 'TEXT', 'nullable': False},
                {'name': 'rating', 'type': 'INT'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_feedback_user', 'columns': ['user_id']}
            ]
        },
        {
            'name': 'recycling_centers',
            'columns': [
                {'name': 'id', 'type': 'SERIAL', 'primary_key': True},
                {'name': 'name', 'type': 'TEXT', 'nullable': False},
                {'name': 'address', 'type': 'TEXT', 'nullable': False},
                {'name': 'city', 'type': 'TEXT', 'nullable': False},
                {'name': 'county', 'type': 'TEXT'},
                {'name': 'location', 'type': 'TEXT'},
                {'name': 'operator', 'type': 'TEXT'},
                {'name': 'facility_type', 'type': 'TEXT'},
                {'name': 'waste_types', 'type': 'TEXT[]', 'nullable': False, 'default': "'{}'"},
                {'name': 'po_box', 'type': 'TEXT'},
                {'name': 'latitude', 'type': 'DOUBLE PRECISION'},
                {'name': 'longitude', 'type': 'DOUBLE PRECISION'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_centers_city', 'columns': ['city']}
            ]
        }
    ],
    'triggers': [
        {
            'name': 'material_interests_touch_updated_at',
            'table': 'material_interests',
            'timing': 'BEFORE',
            'event': 'UPDATE',
            'function_name': 'touch_updated_at',
            'function_body': '''
                BEGIN
                    NEW.updated_at = now();
                    RETURN NEW;
                END;
            '''
        }
    ],
    'migrations': []
}
