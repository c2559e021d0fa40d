"""Peewee models for the local cache."""

from __future__ import annotations

import peewee
from playhouse.sqlite_ext import JSONField

# A proxy that will be initialised with the concrete database instance at runtime.
database_proxy: peewee.Database = peewee.DatabaseProxy()


class BaseModel(peewee.Model):
    """Base Peewee model bound to the lazily initialised database proxy.

    ``updated_at`` columns hold the server-assigned timestamp as a normalized ISO
    string, so lexical order equals chronological order and ``MAX()`` yields a
    cursor that can be sent back verbatim.
    """

    class Meta:
        database = database_proxy
        legacy_table_names = False


class Attraction(BaseModel):
    id = peewee.TextField(primary_key=True)
    name = peewee.TextField()
    description = peewee.TextField(default="")
    category = peewee.TextField(default="")
    latitude = peewee.FloatField(default=0.0)
    longitude = peewee.FloatField(default=0.0)
    address = peewee.TextField(null=True)
    directions = peewee.TextField(null=True)
    images = JSONField(default=list)
    tags = JSONField(default=list)
    amenities = JSONField(default=list)
    working_hours = peewee.TextField(null=True)
    phone_number = peewee.TextField(null=True)
    email = peewee.TextField(null=True)
    website = peewee.TextField(null=True)
    price_info = peewee.TextField(null=True)
    reviews_count = peewee.IntegerField(null=True)
    average_rating = peewee.FloatField(null=True)
    is_published = peewee.BooleanField(default=True)
    created_at = peewee.TextField(null=True)
    updated_at = peewee.TextField(null=True, index=True)

    # local-only
    is_favorite = peewee.BooleanField(default=False)
    last_synced_at = peewee.FloatField(null=True)

    class Meta:
        table_name = "attractions"


class Review(BaseModel):
    id = peewee.TextField(primary_key=True)
    attraction_id = peewee.TextField(index=True)
    user_id = peewee.TextField(null=True)
    rating = peewee.IntegerField(default=0)
    title = peewee.TextField(null=True)
    body = peewee.TextField(null=True)
    status = peewee.TextField(null=True)
    rejection_reason = peewee.TextField(null=True)
    author_name = peewee.TextField(null=True)
    author_avatar = peewee.TextField(null=True)
    likes_count = peewee.IntegerField(default=0)
    dislikes_count = peewee.IntegerField(default=0)
    created_at = peewee.TextField(null=True)
    updated_at = peewee.TextField(null=True, index=True)

    # local-only
    user_reaction = peewee.TextField(null=True)
    is_own_review = peewee.BooleanField(default=False)
    last_synced_at = peewee.FloatField(null=True)

    class Meta:
        table_name = "reviews"
        indexes = ((("attraction_id", "updated_at"), False),)


class KeyValue(BaseModel):
    """Durable key-value pairs: sync cursors, freshness markers and session fields."""

    key = peewee.TextField(primary_key=True)
    value = peewee.TextField()

    class Meta:
        table_name = "key_values"


ALL_MODELS: tuple[type[BaseModel], ...] = (Attraction, Review, KeyValue)
