"""Web 服务 - 洗车店管理后台 JSON API

基于 FastAPI 提供完整的管理接口，包含：
1. 登录认证（服务端会话 + HttpOnly Cookie）
2. 顾客、车辆、服务目录、工单、用户、支出的增删改查
3. 经营统计（日报、支付方式、净利润、热门服务）
4. 全库备份导出、恢复与备份文件管理

使用方式：
    ```python
    server = WebServer(db, auth, stats, backup, port=8080)
    await server.startup()
    # 访问 http://localhost:8080/health 检查服务
    ```
"""
import asyncio
import threading
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import IntegrityError
from starlette.concurrency import run_in_threadpool

from business.auth import AuthGate
from business.backup import BackupService
from business.dates import parse_date, month_bounds
from business.errors import (
    InvalidCredentialsError, NotFoundError, PermissionDeniedError,
    ValidationError
)
from business.statistics import StatisticsAggregator
from config.business_config import business_config
from config.settings import settings
from database.manager import DatabaseManager
from database.models import (
    Customer, Vehicle, Service, Job, User, Expense, ExpenseCategory
)
from database.serializers import (
    customer_to_dict, vehicle_to_dict, service_to_dict, job_to_dict,
    job_service_to_dict, user_to_dict, expense_to_dict
)
from .schemas import (
    LoginRequest, RegisterRequest, ChangePasswordRequest,
    CustomerCreate, CustomerUpdate, VehicleCreate, VehicleUpdate,
    ServiceCreate, ServiceUpdate, JobCreate, JobUpdate, JobServiceLink,
    UserCreate, UserUpdate, ExpenseCreate, ExpenseUpdate, BackupSettings
)


def _no_content() -> Response:
    return Response(status_code=204)


class WebServer:
    """管理后台 Web 服务

    路由：
    - POST /api/register, /api/login, /api/logout, /api/change-password
    - GET  /api/user
    - /api/customers, /api/vehicles, /api/services, /api/jobs,
      /api/users, /api/expenses → 增删改查
    - GET  /api/stats/*       → 经营统计
    - /api/backup/*           → 备份导出 / 恢复 / 文件列表 / 自动备份开关
    - GET  /health            → 健康检查

    除注册和登录外，所有 /api 路由都需要登录。
    """

    def __init__(
        self,
        db: DatabaseManager,
        auth: AuthGate,
        stats: StatisticsAggregator,
        backup: BackupService,
        host: str = "0.0.0.0",
        port: int = 8080,
    ):
        self.db = db
        self.auth = auth
        self.stats = stats
        self.backup = backup
        self.host = host
        self.port = port
        self.app = None
        self.running = False
        self._server_thread: Optional[threading.Thread] = None
        self._server = None  # uvicorn.Server 实例
        self._server_loop = None  # 服务器事件循环

    # ==================== 认证依赖 ====================

    @staticmethod
    def _session_token(request: Request) -> Optional[str]:
        return request.cookies.get(settings.session_cookie)

    def _require_user(self, request: Request) -> User:
        """当前登录用户，未登录返回 401"""
        user = self.auth.current_user(self._session_token(request))
        if user is None:
            raise InvalidCredentialsError("Not authenticated")
        return user

    def _require_admin(self, request: Request) -> User:
        """当前登录的管理员，非管理员返回 403"""
        user = self._require_user(request)
        if not user.is_admin:
            raise PermissionDeniedError("Administrator access required")
        return user

    @staticmethod
    def _set_session_cookie(response: Response, token: str) -> None:
        response.set_cookie(
            settings.session_cookie,
            token,
            max_age=settings.session_days * 24 * 3600,
            httponly=True,
            samesite="lax",
            secure=settings.cookie_secure,
        )

    @staticmethod
    def _fetch(repo, model: type, record_id: int, entity: str):
        record = repo.get_by_id(model, record_id)
        if record is None:
            raise NotFoundError(entity, record_id)
        return record

    # ==================== 应用 ====================

    def create_app(self) -> FastAPI:
        """创建 FastAPI 应用"""
        app = FastAPI(
            title=business_config.get_app_name(),
            description="洗车店管理后台 API",
            version="1.0.0",
        )
        self._add_error_handlers(app)

        @app.get("/health")
        def health():
            """健康检查"""
            return {"status": "ok", "running": self.running}

        self._add_public_routes(app)

        router = APIRouter(prefix="/api",
                           dependencies=[Depends(self._require_user)])
        self._add_auth_routes(router)
        self._add_customer_routes(router)
        self._add_vehicle_routes(router)
        self._add_service_routes(router)
        self._add_job_routes(router)
        self._add_user_routes(router)
        self._add_expense_routes(router)
        self._add_stats_routes(router)
        self._add_backup_routes(router)
        app.include_router(router)
        return app

    def _add_error_handlers(self, app: FastAPI) -> None:
        @app.exception_handler(ValidationError)
        async def validation_error(request: Request, exc: ValidationError):
            return JSONResponse(
                status_code=400,
                content={"message": exc.message, "errors": exc.errors},
            )

        @app.exception_handler(RequestValidationError)
        async def request_validation_error(request: Request,
                                           exc: RequestValidationError):
            errors = [
                {"loc": list(e.get("loc", ())), "message": e.get("msg")}
                for e in exc.errors()
            ]
            return JSONResponse(
                status_code=400,
                content={"message": "Invalid request", "errors": errors},
            )

        @app.exception_handler(NotFoundError)
        async def not_found(request: Request, exc: NotFoundError):
            return JSONResponse(status_code=404, content={"message": str(exc)})

        @app.exception_handler(InvalidCredentialsError)
        async def unauthorized(request: Request, exc: InvalidCredentialsError):
            return JSONResponse(status_code=401, content={"message": str(exc)})

        @app.exception_handler(PermissionDeniedError)
        async def forbidden(request: Request, exc: PermissionDeniedError):
            return JSONResponse(status_code=403, content={"message": str(exc)})

        @app.exception_handler(IntegrityError)
        async def integrity_error(request: Request, exc: IntegrityError):
            logger.warning(f"Integrity error on {request.url.path}: {exc.orig}")
            return JSONResponse(
                status_code=400,
                content={"message": "Request conflicts with existing data"},
            )

        @app.exception_handler(Exception)
        async def unexpected_error(request: Request, exc: Exception):
            logger.exception(f"Unhandled error on {request.url.path}: {exc}")
            return JSONResponse(
                status_code=500, content={"message": "Internal server error"}
            )

    # ==================== 认证 API ====================

    def _add_public_routes(self, app: FastAPI) -> None:
        @app.post("/api/register", status_code=201)
        def register(body: RegisterRequest, response: Response):
            """注册普通用户并登录"""
            token, user = self.auth.register(
                body.username, body.password, body.full_name
            )
            self._set_session_cookie(response, token)
            return user_to_dict(user)

        @app.post("/api/login")
        def login(body: LoginRequest, response: Response):
            """登录认证"""
            token, user = self.auth.login(body.username, body.password)
            self._set_session_cookie(response, token)
            return user_to_dict(user)

    def _add_auth_routes(self, router: APIRouter) -> None:
        @router.post("/logout")
        def logout(request: Request, response: Response):
            self.auth.logout(self._session_token(request))
            response.delete_cookie(settings.session_cookie)
            return {"message": "Logged out"}

        @router.get("/user")
        def current_user(user: User = Depends(self._require_user)):
            return user_to_dict(user)

        @router.post("/change-password")
        def change_password(body: ChangePasswordRequest, request: Request):
            self.auth.change_password(
                self._session_token(request),
                body.current_password, body.new_password,
            )
            return {"message": "Password changed"}

    # ==================== 顾客 ====================

    def _add_customer_routes(self, router: APIRouter) -> None:
        repo = self.db.customers

        @router.get("/customers")
        def list_customers(search: Optional[str] = None):
            rows = repo.search(search) if search else repo.list_all()
            return [customer_to_dict(c) for c in rows]

        @router.get("/customers/{customer_id}")
        def get_customer(customer_id: int):
            return customer_to_dict(
                self._fetch(repo, Customer, customer_id, "Customer")
            )

        @router.post("/customers", status_code=201)
        def create_customer(body: CustomerCreate):
            return customer_to_dict(repo.create(Customer, **body.model_dump()))

        @router.put("/customers/{customer_id}")
        def update_customer(customer_id: int, body: CustomerUpdate):
            customer = repo.update_by_id(Customer, customer_id,
                                         **body.submitted())
            if customer is None:
                raise NotFoundError("Customer", customer_id)
            return customer_to_dict(customer)

        @router.delete("/customers/{customer_id}")
        def delete_customer(customer_id: int):
            if not repo.delete(customer_id):
                raise NotFoundError("Customer", customer_id)
            return _no_content()

        @router.get("/customers/{customer_id}/vehicles")
        def customer_vehicles(customer_id: int):
            self._fetch(repo, Customer, customer_id, "Customer")
            return [vehicle_to_dict(v)
                    for v in self.db.vehicles.get_by_customer(customer_id)]

        @router.get("/customers/{customer_id}/jobs")
        def customer_jobs(customer_id: int):
            self._fetch(repo, Customer, customer_id, "Customer")
            return [job_to_dict(j)
                    for j in self.db.jobs.get_by_customer(customer_id)]

        @router.get("/customers/{customer_id}/analytics")
        def customer_analytics(customer_id: int):
            return self.stats.customer_analytics(customer_id)

    # ==================== 车辆 ====================

    def _check_customer(self, customer_id: int) -> None:
        if self.db.customers.get_by_id(Customer, customer_id) is None:
            raise ValidationError(f"Customer {customer_id} does not exist")

    def _check_vehicle(self, vehicle_id: int) -> None:
        if self.db.vehicles.get_by_id(Vehicle, vehicle_id) is None:
            raise ValidationError(f"Vehicle {vehicle_id} does not exist")

    def _check_plate(self, plate: str,
                     vehicle_id: Optional[int] = None) -> None:
        existing = self.db.vehicles.get_by_plate(plate)
        if existing is not None and existing.id != vehicle_id:
            raise ValidationError(f"Plate {plate} is already registered")

    def _add_vehicle_routes(self, router: APIRouter) -> None:
        repo = self.db.vehicles

        @router.get("/vehicles")
        def list_vehicles(customer_id: Optional[int] = Query(
                None, alias="customerId")):
            if customer_id is not None:
                rows = repo.get_by_customer(customer_id)
            else:
                rows = repo.list_all()
            return [vehicle_to_dict(v) for v in rows]

        @router.get("/vehicles/plate/{plate}")
        def get_vehicle_by_plate(plate: str):
            vehicle = repo.get_by_plate(plate)
            if vehicle is None:
                raise NotFoundError("Vehicle", plate)
            return vehicle_to_dict(vehicle)

        @router.get("/vehicles/{vehicle_id}")
        def get_vehicle(vehicle_id: int):
            return vehicle_to_dict(
                self._fetch(repo, Vehicle, vehicle_id, "Vehicle")
            )

        @router.post("/vehicles", status_code=201)
        def create_vehicle(body: VehicleCreate):
            self._check_customer(body.customer_id)
            self._check_plate(body.plate)
            return vehicle_to_dict(repo.create(Vehicle, **body.model_dump()))

        @router.put("/vehicles/{vehicle_id}")
        def update_vehicle(vehicle_id: int, body: VehicleUpdate):
            self._fetch(repo, Vehicle, vehicle_id, "Vehicle")
            data = body.submitted()
            if data.get("customer_id") is not None:
                self._check_customer(data["customer_id"])
            if data.get("plate"):
                self._check_plate(data["plate"], vehicle_id)
            return vehicle_to_dict(repo.update_by_id(Vehicle, vehicle_id, **data))

        @router.delete("/vehicles/{vehicle_id}")
        def delete_vehicle(vehicle_id: int):
            if not repo.delete(vehicle_id):
                raise NotFoundError("Vehicle", vehicle_id)
            return _no_content()

    # ==================== 服务目录 ====================

    def _add_service_routes(self, router: APIRouter) -> None:
        repo = self.db.services

        @router.get("/services")
        def list_services():
            return [service_to_dict(s) for s in repo.list_all()]

        @router.get("/services/{service_id}")
        def get_service(service_id: int):
            return service_to_dict(
                self._fetch(repo, Service, service_id, "Service")
            )

        @router.post("/services", status_code=201)
        def create_service(body: ServiceCreate):
            return service_to_dict(repo.create(Service, **body.model_dump()))

        @router.put("/services/{service_id}")
        def update_service(service_id: int, body: ServiceUpdate):
            service = repo.update_by_id(Service, service_id, **body.submitted())
            if service is None:
                raise NotFoundError("Service", service_id)
            return service_to_dict(service)

        @router.delete("/services/{service_id}")
        def delete_service(service_id: int):
            self._fetch(repo, Service, service_id, "Service")
            if repo.is_system(service_id):
                raise ValidationError("System services cannot be deleted")
            repo.delete(service_id)
            return _no_content()

    # ==================== 工单 ====================

    def _check_services(self, service_ids) -> None:
        missing = [
            sid for sid in service_ids
            if self.db.services.get_by_id(Service, sid) is None
        ]
        if missing:
            raise ValidationError(
                "Unknown services", errors=[{"serviceId": sid} for sid in missing]
            )

    def _add_job_routes(self, router: APIRouter) -> None:
        repo = self.db.jobs

        @router.get("/jobs")
        def list_jobs(day: Optional[str] = Query(None, alias="date")):
            if day:
                return self.db.get_daily_jobs(parse_date(day))
            return [job_to_dict(j) for j in repo.list_all()]

        @router.get("/jobs/{job_id}")
        def get_job(job_id: int):
            return job_to_dict(self._fetch(repo, Job, job_id, "Job"))

        @router.post("/jobs", status_code=201)
        def create_job(body: JobCreate):
            data = body.model_dump()
            service_ids = data.pop("service_ids")
            self._check_customer(body.customer_id)
            self._check_vehicle(body.vehicle_id)
            self._check_services(service_ids)
            return job_to_dict(repo.create_job(data, service_ids))

        @router.put("/jobs/{job_id}")
        def update_job(job_id: int, body: JobUpdate):
            self._fetch(repo, Job, job_id, "Job")
            data = body.submitted()
            if data.get("customer_id") is not None:
                self._check_customer(data["customer_id"])
            if data.get("vehicle_id") is not None:
                self._check_vehicle(data["vehicle_id"])
            return job_to_dict(repo.update_by_id(Job, job_id, **data))

        @router.delete("/jobs/{job_id}")
        def delete_job(job_id: int):
            if not repo.delete(job_id):
                raise NotFoundError("Job", job_id)
            return _no_content()

        @router.get("/jobs/{job_id}/services")
        def job_services(job_id: int):
            self._fetch(repo, Job, job_id, "Job")
            return self.db.get_job_services(job_id)

        @router.post("/jobs/{job_id}/services", status_code=201)
        def add_job_service(job_id: int, body: JobServiceLink):
            self._fetch(repo, Job, job_id, "Job")
            self._check_services([body.service_id])
            return job_service_to_dict(repo.add_service(job_id, body.service_id))

        @router.delete("/jobs/{job_id}/services/{service_id}")
        def remove_job_service(job_id: int, service_id: int):
            if not repo.remove_service(job_id, service_id):
                raise NotFoundError("Job service", f"{job_id}/{service_id}")
            return _no_content()

    # ==================== 用户 ====================

    def _ensure_admin_remains(self, target: User) -> None:
        if target.is_admin and self.db.users.count_admins() <= 1:
            raise ValidationError("Cannot remove the last administrator")

    def _add_user_routes(self, router: APIRouter) -> None:
        repo = self.db.users
        require_admin = Depends(self._require_admin)

        @router.get("/users", dependencies=[require_admin])
        def list_users():
            return [user_to_dict(u) for u in repo.list_all()]

        @router.post("/users", status_code=201, dependencies=[require_admin])
        def create_user(body: UserCreate):
            user = self.auth.create_user(
                body.username, body.password, body.full_name, body.is_admin
            )
            return user_to_dict(user)

        @router.get("/users/{user_id}")
        def get_user(user_id: int, user: User = Depends(self._require_user)):
            if not user.is_admin and user.id != user_id:
                raise PermissionDeniedError("Cannot view other users")
            return user_to_dict(self._fetch(repo, User, user_id, "User"))

        @router.put("/users/{user_id}")
        def update_user(user_id: int, body: UserUpdate,
                        user: User = Depends(self._require_user)):
            if not user.is_admin and user.id != user_id:
                raise PermissionDeniedError("Cannot modify other users")
            target = self._fetch(repo, User, user_id, "User")
            data = body.submitted()

            is_admin = data.get("is_admin")
            if is_admin is not None and bool(is_admin) != bool(target.is_admin):
                if not user.is_admin:
                    raise PermissionDeniedError("Cannot change admin rights")
                if not is_admin:
                    self._ensure_admin_remains(target)

            password = data.pop("password", None)
            if password:
                self.auth.set_password(user_id, password)
            return user_to_dict(repo.update_by_id(User, user_id, **data))

        @router.delete("/users/{user_id}", dependencies=[require_admin])
        def delete_user(user_id: int):
            target = self._fetch(repo, User, user_id, "User")
            self._ensure_admin_remains(target)
            repo.delete_by_id(User, user_id)
            self.auth.sessions.revoke_user(user_id)
            return _no_content()

    # ==================== 支出 ====================

    def _add_expense_routes(self, router: APIRouter) -> None:
        repo = self.db.expenses

        @router.get("/expenses")
        def list_expenses():
            return [expense_to_dict(e) for e in repo.list_all()]

        @router.get("/expenses/category/{category}")
        def expenses_by_category(category: ExpenseCategory):
            return [expense_to_dict(e) for e in repo.get_by_category(category)]

        @router.get("/expenses/date-range")
        def expenses_by_date_range(
            start_date: str = Query(..., alias="startDate"),
            end_date: str = Query(..., alias="endDate"),
        ):
            start = parse_date(start_date, "startDate")
            end = parse_date(end_date, "endDate")
            return [expense_to_dict(e)
                    for e in repo.get_by_date_range(start, end)]

        @router.get("/expenses/{expense_id}")
        def get_expense(expense_id: int):
            return expense_to_dict(
                self._fetch(repo, Expense, expense_id, "Expense")
            )

        @router.post("/expenses", status_code=201)
        def create_expense(body: ExpenseCreate):
            return expense_to_dict(repo.create(Expense, **body.model_dump()))

        @router.put("/expenses/{expense_id}")
        def update_expense(expense_id: int, body: ExpenseUpdate):
            expense = repo.update_by_id(Expense, expense_id, **body.submitted())
            if expense is None:
                raise NotFoundError("Expense", expense_id)
            return expense_to_dict(expense)

        @router.delete("/expenses/{expense_id}")
        def delete_expense(expense_id: int):
            if not repo.delete_by_id(Expense, expense_id):
                raise NotFoundError("Expense", expense_id)
            return _no_content()

    # ==================== 经营统计 ====================

    def _add_stats_routes(self, router: APIRouter) -> None:
        @router.get("/stats/daily")
        def daily_stats(day: Optional[str] = Query(None, alias="date")):
            return self.stats.daily_stats(parse_date(day))

        @router.get("/stats/payment-methods")
        def payment_method_stats():
            return self.stats.payment_method_stats()

        @router.get("/stats/net-profit")
        def net_profit(
            start_date: Optional[str] = Query(None, alias="startDate"),
            end_date: Optional[str] = Query(None, alias="endDate"),
        ):
            first_day, last_day = month_bounds()
            start = parse_date(start_date, "startDate", default=first_day)
            end = parse_date(end_date, "endDate", default=last_day)
            return self.stats.net_profit(start, end)

        @router.get("/stats/popular-services")
        def popular_services():
            return self.stats.popular_services()

    # ==================== 备份 ====================

    def _add_backup_routes(self, router: APIRouter) -> None:
        require_admin = Depends(self._require_admin)

        @router.get("/backup/export", dependencies=[require_admin])
        def export_backup():
            snapshot = self.backup.export_snapshot()
            filename = f"{self.backup.prefix}_backup_{date.today().isoformat()}.json"
            return JSONResponse(
                content=snapshot,
                headers={
                    "Content-Disposition": f'attachment; filename="{filename}"'
                },
            )

        @router.post("/backup/import", dependencies=[require_admin])
        async def import_backup(request: Request):
            try:
                envelope = await request.json()
            except ValueError:
                raise ValidationError("Request body is not valid JSON")

            success = await run_in_threadpool(
                self.backup.import_snapshot, envelope
            )
            if success:
                return {"message": "Backup restored", "success": True}
            return JSONResponse(
                status_code=500,
                content={"message": "Backup restore failed", "success": False},
            )

        @router.get("/backup/list", dependencies=[require_admin])
        def list_backups():
            return self.backup.list_backups()

        @router.post("/backup/manual", status_code=201,
                     dependencies=[require_admin])
        def manual_backup():
            return self.backup.create_manual_backup()

        @router.get("/backup/settings", dependencies=[require_admin])
        def get_backup_settings():
            return {"autoBackupEnabled": self.backup.is_auto_backup_enabled()}

        @router.post("/backup/settings", dependencies=[require_admin])
        def set_backup_settings(body: BackupSettings):
            enabled = self.backup.set_auto_backup_enabled(
                body.auto_backup_enabled
            )
            return {"autoBackupEnabled": enabled}

    # ==================== 生命周期 ====================

    async def startup(self):
        """启动 Web 服务器"""
        import uvicorn

        self.app = self.create_app()
        self.running = True

        def run_server():
            """在独立线程中运行 uvicorn 服务器"""
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            self._server_loop = loop

            # 创建 uvicorn 配置，禁用 uvicorn 自身的信号处理
            config = uvicorn.Config(
                self.app,
                host=self.host,
                port=self.port,
                log_level="warning",
                loop="asyncio",
            )
            self._server = uvicorn.Server(config)
            # 信号由 app.py 统一管理
            self._server.install_signal_handlers = lambda: None

            try:
                loop.run_until_complete(self._server.serve())
            except Exception as e:
                logger.error(f"服务器运行出错: {e}")
            finally:
                pending = asyncio.all_tasks(loop)
                for task in pending:
                    task.cancel()
                if pending:
                    loop.run_until_complete(
                        asyncio.gather(*pending, return_exceptions=True)
                    )
                loop.run_until_complete(loop.shutdown_asyncgens())
                loop.close()

        self._server_thread = threading.Thread(target=run_server, daemon=True)
        self._server_thread.start()

        # 等待服务器启动
        max_wait = 5
        waited = 0
        while self._server is None and waited < max_wait:
            await asyncio.sleep(0.1)
            waited += 0.1

        logger.info(f"Web 服务已启动: http://{self.host}:{self.port}")

    async def shutdown(self):
        """停止 Web 服务器，确保端口被释放"""
        self.running = False
        if self._server is None:
            return

        logger.info("正在停止 Web 服务器...")
        self._server.should_exit = True
        if self._server_thread and self._server_thread.is_alive():
            await asyncio.to_thread(self._server_thread.join, 3.0)

        if self._server_thread and self._server_thread.is_alive():
            # 优雅退出超时，强制退出
            logger.warning("Web 服务器未在超时内退出，强制停止")
            self._server.force_exit = True
            await asyncio.to_thread(self._server_thread.join, 2.0)

        self._server = None
        self._server_loop = None
        self._server_thread = None
        logger.info("Web 服务器已停止")
