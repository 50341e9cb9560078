"""Schema-driven create/update form for any allow-listed collection."""

import logging
from contextlib import contextmanager
from typing import Annotated, Any, Dict, Hashable, Iterator, List, Optional, Set, Union

from pydantic import ConfigDict, Field, ValidationError, create_model

from shared.datastore import Collection, DataStore, require_collection
from shared.utils import DataStoreError, FormValidationError, SubmissionInProgressError

from services.admin.fields import (
    SELECT_SOURCES,
    SYSTEM_FIELDS,
    Control,
    FieldSpec,
    FieldType,
    FormField,
    Option,
    SpecialField,
    control_for,
    label_for,
    schema_for,
)

logger = logging.getLogger(__name__)

Number = Union[int, float]
NonNegativeNumber = Union[Annotated[int, Field(ge=0)], Annotated[float, Field(ge=0)]]


def field_definition(spec: FieldSpec):
    if spec.type == FieldType.STRING:
        if spec.required:
            return (str, Field(..., min_length=1))
        return (Optional[str], None)
    if spec.type == FieldType.NUMBER:
        if spec.required:
            return (NonNegativeNumber, ...)
        return (Optional[Number], None)
    if spec.type == FieldType.BOOLEAN:
        return (bool, False)
    return (Any, None)


def build_validation_model(name: str, specs: List[FieldSpec]):
    definitions = {spec.name: field_definition(spec) for spec in specs}
    return create_model(
        f"{name.title().replace('_', '')}Form",
        __config__=ConfigDict(extra="ignore"),
        **definitions,
    )


class SubmissionRegistry:
    """Writes currently in flight, shared by every request of a service."""

    def __init__(self):
        self._active: Set[Hashable] = set()

    def is_active(self, key: Hashable) -> bool:
        return key in self._active

    @contextmanager
    def claim(self, key: Hashable) -> Iterator[None]:
        if key in self._active:
            raise SubmissionInProgressError()
        self._active.add(key)
        try:
            yield
        finally:
            self._active.discard(key)


class CrudForm:
    def __init__(
        self,
        collection: str,
        initial_data: Optional[Dict[str, Any]] = None,
        is_editing: bool = False,
        submissions: Optional[SubmissionRegistry] = None,
        owner: Optional[str] = None,
    ):
        self.collection_name = collection
        self.initial_data = initial_data or None
        self.is_editing = is_editing
        self.submissions = submissions or SubmissionRegistry()
        self.owner = owner

    @property
    def collection(self) -> Collection:
        return require_collection(self.collection_name)

    @property
    def fields(self) -> List[FieldSpec]:
        return schema_for(self.collection, self.initial_data)

    def default_values(self) -> Dict[str, Any]:
        if self.initial_data:
            return {k: v for k, v in self.initial_data.items() if k not in SYSTEM_FIELDS}
        return {spec.name: False if spec.type == FieldType.BOOLEAN else None for spec in self.fields}

    def validate(self, values: Dict[str, Any]) -> Dict[str, Any]:
        """Check submitted values against the form schema.

        Raises FormValidationError with one message per offending field.
        """
        specs = self.fields
        cleaned = dict(values)
        for spec in specs:
            # Blank numeric inputs count as not filled in
            if spec.type == FieldType.NUMBER and cleaned.get(spec.name) == "":
                cleaned[spec.name] = None
            if spec.type == FieldType.NUMBER and cleaned.get(spec.name) is None and not spec.required:
                cleaned.pop(spec.name, None)

        model = build_validation_model(self.collection.value, specs)
        try:
            parsed = model.model_validate(cleaned)
        except ValidationError as e:
            raise FormValidationError(_field_errors(e, specs))

        data = parsed.model_dump(exclude_unset=True)
        if not self.is_editing:
            for spec in specs:
                if spec.type == FieldType.BOOLEAN:
                    data.setdefault(spec.name, False)
        return data

    async def render(self, store: Optional[DataStore] = None) -> List[FormField]:
        collection = self.collection
        values = self.default_values()
        references: Dict[Collection, List[Option]] = {}
        rendered = []

        for spec in self.fields:
            control = control_for(collection, spec)
            readable = spec.name.replace("_", " ", 1)
            placeholder = f"Enter {readable}"
            options: List[Option] = []

            special = SpecialField.lookup(collection, spec.name)
            if special is not None:
                source = SELECT_SOURCES[special]
                placeholder = source.placeholder
                if source.collection is not None:
                    if source.collection not in references:
                        rows = await store.select(source.collection, columns="id,name") if store else []
                        references[source.collection] = [Option(str(r["id"]), r["name"]) for r in rows]
                    options = references[source.collection]
                else:
                    options = [Option(v, v) for v in source.options]
            elif control == Control.TOGGLE:
                placeholder = "Enable this option"

            rendered.append(FormField(
                name=spec.name,
                label=label_for(spec.name),
                type=spec.type,
                required=spec.required,
                control=control,
                placeholder=placeholder,
                value=values.get(spec.name, False if control == Control.TOGGLE else None),
                options=options,
            ))
        return rendered

    @property
    def submission_key(self) -> tuple:
        record_id = (self.initial_data or {}).get("id")
        if self.is_editing and record_id is not None:
            return (self.collection.value, record_id)
        return (self.collection.value, None, self.owner)

    @property
    def submitting(self) -> bool:
        return self.submissions.is_active(self.submission_key)

    async def submit(self, values: Dict[str, Any], store: DataStore) -> Dict[str, Any]:
        """Validate, then update the edited record or insert a new one.

        Raises SubmissionInProgressError while an earlier submission for the
        same record (or the same owner's new record) is still in flight.
        """
        collection = self.collection
        record_id = (self.initial_data or {}).get("id")
        updating = self.is_editing and record_id is not None
        action = "update" if updating else "create"

        with self.submissions.claim(self.submission_key):
            data = self.validate(values)
            try:
                if updating:
                    await store.update(collection, record_id, data)
                    result = {**self.initial_data, **data, "id": record_id}
                else:
                    result = await store.insert(collection, data)
            except DataStoreError as e:
                logger.error(
                    f"Error saving record: {e.detail}",
                    extra={"collection": collection.value, "record_id": record_id},
                )
                raise DataStoreError(f"Failed to {action} record: {e.detail}")

        logger.info(
            f"Record {action}d",
            extra={"collection": collection.value, "record_id": result.get("id")},
        )
        return result


def _field_errors(exc: ValidationError, specs: List[FieldSpec]) -> List[dict]:
    required = {spec.name for spec in specs if spec.required}
    errors = []
    seen = set()
    for err in exc.errors():
        name = str(err["loc"][0]) if err["loc"] else "__root__"
        # union members report one error each
        if name in seen:
            continue
        seen.add(name)
        if name in required and (err["type"] == "missing" or err.get("input") in (None, "")):
            message = f"{name} is required"
        else:
            message = err["msg"]
        errors.append({"field": name, "message": message})
    return errors
