import boto3
from boto3.dynamodb.conditions import Attr
from typing import Optional, Dict, Any
from botocore.exceptions import ClientError
from imagevault.settings import settings
import logging

log = logging.getLogger(__name__)

def _resource():
    session = boto3.session.Session(region_name=settings.aws_region)
    kwargs = {
        "aws_access_key_id": settings.aws_access_key_id,
        "aws_secret_access_key": settings.aws_secret_access_key,
    }
    if settings.aws_endpoint_url:
        kwargs["endpoint_url"] = settings.aws_endpoint_url
    return session.resource("dynamodb", **kwargs)

# Refer here: https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/dynamodb/client/create_table.html
def _ensure_table(resource, table_name: str, key: str):
    try:
        table = resource.Table(table_name)
        table.load()
    except ClientError:
        table = resource.create_table(
            TableName=table_name,
            KeySchema=[{"AttributeName": key, "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": key, "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        table.wait_until_exists()
        log.info("Created table %s", table_name)

# -------------------------
# Image metadata table
# -------------------------
class DynamoDBService:
    def __init__(self):
        self.resource = _resource()
        log.info("Initialized DynamoDB resource")

        if settings.auto_create_resources and settings.images_table:
            self.ensure_table()

    def ensure_table(self):
        _ensure_table(self.resource, settings.images_table, "imageId")

    @property
    def table(self):
        return self.resource.Table(settings.images_table)

    def put_metadata(self, item: Dict[str, Any]):
        """Inserts a record; fails with ConditionalCheckFailedException if the id is taken."""
        self.table.put_item(
            Item=item,
            ConditionExpression=Attr("imageId").not_exists(),
        )
        log.debug("Inserted metadata %s", item.get("imageId"))

    def get_metadata(self, image_id: str) -> Optional[Dict[str, Any]]:
        resp = self.table.get_item(Key={"imageId": image_id})
        return resp.get("Item")

    def update_metadata(
        self,
        image_id: str,
        fields: Dict[str, Any],
        owner: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
            Sets the given attributes on an existing record and returns the new record.

            When ``owner`` is given the write is also conditioned on ``userId``.
        """
        if not fields:
            raise ValueError("No fields to update")

        names: Dict[str, str] = {}
        values: Dict[str, Any] = {}
        assignments = []
        for index, (name, value) in enumerate(fields.items()):
            names[f"#k{index}"] = name
            values[f":v{index}"] = value
            assignments.append(f"#k{index} = :v{index}")

        condition = "attribute_exists(imageId)"
        if owner is not None:
            names["#owner"] = "userId"
            values[":owner"] = owner
            condition += " AND #owner = :owner"

        resp = self.table.update_item(
            Key={"imageId": image_id},
            UpdateExpression="SET " + ", ".join(assignments),
            ConditionExpression=condition,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues="ALL_NEW",
        )
        log.debug("Updated metadata %s (%s)", image_id, ", ".join(fields))
        return resp.get("Attributes", {})

    def delete_metadata(self, image_id: str, owner: Optional[str] = None):
        condition = Attr("imageId").exists()
        if owner is not None:
            condition = condition & Attr("userId").eq(owner)
        self.table.delete_item(Key={"imageId": image_id}, ConditionExpression=condition)
        log.debug("Deleted metadata %s", image_id)

    def scan_metadata(
        self,
        limit: int = 50,
        exclusive_start_key: Optional[Dict[str, str]] = None,
        owner: Optional[str] = None,
    ) -> Dict[str, Any]:
        scan_kwargs: Dict[str, Any] = {"Limit": limit}
        if exclusive_start_key:
            scan_kwargs["ExclusiveStartKey"] = exclusive_start_key
        if owner:
            scan_kwargs["FilterExpression"] = Attr("userId").eq(owner)
        return self.table.scan(**scan_kwargs)

    def close(self):
        log.info("Closed DynamoDB resource")

# -------------------------
# Sign-in allow-list table
# -------------------------
class AllowlistService:
    def __init__(self):
        self.resource = _resource()

        if settings.auto_create_resources and settings.email_table:
            _ensure_table(self.resource, settings.email_table, "email")

    def get_user(self, email: str) -> Optional[Dict[str, Any]]:
        table = self.resource.Table(settings.email_table)
        resp = table.get_item(Key={"email": email})
        return resp.get("Item")

    def close(self):
        log.info("Closed allow-list resource")
