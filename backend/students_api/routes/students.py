"""
Students API routes - CRUD over the student collection.

Every route of this router is gated behind a live database connection
(``GatedRoute``), which answers 503 before the request body is read and
before any id validation or storage access. Paths depend on the configured
route style:

    operation        legacy                  rest
    list             GET    {prefix}         GET    {prefix}
    get              GET    {prefix}/{id}    GET    {prefix}/{id}
    create           POST   {prefix}/new     POST   {prefix}
    full update      PUT    {prefix}/update/{id}    PUT    {prefix}/{id}
    partial update   PATCH  {prefix}/upload/{id}    PATCH  {prefix}/{id}
    delete           DELETE {prefix}/drop/user/{id} DELETE {prefix}/{id}
"""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.routing import APIRoute
from pymongo.collection import Collection

from students_api.config import Settings
from students_api.database import get_students_collection, require_database
from students_api.models.student import StudentCreate, StudentUpdate
from students_api.services import students as service

ROUTE_PATHS = {
    "legacy": {
        "list": "",
        "get": "/{student_id}",
        "create": "/new",
        "update": "/update/{student_id}",
        "patch": "/upload/{student_id}",
        "delete": "/drop/user/{student_id}",
    },
    "rest": {
        "list": "",
        "get": "/{student_id}",
        "create": "",
        "update": "/{student_id}",
        "patch": "/{student_id}",
        "delete": "/{student_id}",
    },
}

ROUTE_METHODS = {
    "list": ("GET", "List all students"),
    "get": ("GET", "Get a student by id"),
    "create": ("POST", "Create a student"),
    "update": ("PUT", "Update a student"),
    "patch": ("PATCH", "Partially update a student"),
    "delete": ("DELETE", "Delete a student"),
}


class GatedRoute(APIRoute):
    """Route that checks the database state before FastAPI parses the request."""

    def get_route_handler(self):
        handler = super().get_route_handler()

        async def gated_handler(request: Request):
            require_database(request)
            return await handler(request)

        return gated_handler


def student_routes(settings: Settings) -> List[Dict[str, str]]:
    """Method, full path and description of each student route."""
    paths = ROUTE_PATHS[settings.route_style]
    return [
        {"method": method, "path": settings.students_prefix + paths[name], "description": description}
        for name, (method, description) in ROUTE_METHODS.items()
    ]


def create_router(settings: Settings) -> APIRouter:
    paths = ROUTE_PATHS[settings.route_style]
    router = APIRouter(prefix=settings.students_prefix, tags=["Students"],
                       route_class=GatedRoute)

    # Static paths are registered before "/{student_id}" so "/new" is not
    # captured as an id.

    @router.get(paths["list"])
    def list_students(collection: Collection = Depends(get_students_collection)):
        """List every stored student; an empty collection yields []."""
        return service.list_students(collection)

    @router.post(paths["create"], status_code=201)
    def create_student(payload: StudentCreate,
                       collection: Collection = Depends(get_students_collection)):
        """Create a student; all five fields are required."""
        return service.create_student(collection, payload)

    @router.get(paths["get"])
    def get_student(student_id: str, collection: Collection = Depends(get_students_collection)):
        return service.serialize_student(service.find_student(collection, student_id))

    @router.put(paths["update"])
    def update_student(student_id: str, payload: Optional[StudentUpdate] = None,
                       collection: Collection = Depends(get_students_collection)):
        """Overwrite the supplied non-blank fields of a student."""
        document = service.find_student(collection, student_id)
        return service.update_student(collection, document, payload or StudentUpdate())

    @router.patch(paths["patch"])
    def patch_student(student_id: str, payload: Optional[StudentUpdate] = None,
                      collection: Collection = Depends(get_students_collection)):
        """Like PUT, but at least one non-blank field is required."""
        document = service.find_student(collection, student_id)
        return service.update_student(collection, document, payload or StudentUpdate(),
                                      require_changes=True)

    @router.delete(paths["delete"])
    def delete_student(student_id: str, collection: Collection = Depends(get_students_collection)):
        document = service.find_student(collection, student_id)
        return service.delete_student(collection, document)

    return router
