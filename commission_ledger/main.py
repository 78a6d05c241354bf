import logging
import os
import time as _time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, HTTPException, UploadFile, File, Form
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from .config import settings
from .database import Database, get_db
from .exceptions import LedgerError
from .migrations import run_migrations
from .models import (
    LedgerResponse, TitleUpdateRequest, OrderCreateRequest,
    ServiceInvoiceCreateRequest, ServiceInvoiceUpdateRequest
)
from .services import InvoiceImportService, LedgerService, ServiceInvoiceService
from .utils import temporary_upload

# 配置日志
logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 允许外部（如测试）预先注入数据库句柄
    owned = getattr(app.state, "database", None) is None
    if owned:
        app.state.database = Database(settings.get_database_url())
    database: Database = app.state.database
    run_migrations(database.engine)
    logger.info(f"数据库已就绪 (环境: {settings.ENVIRONMENT})")
    try:
        yield
    finally:
        if owned:
            database.dispose()
            app.state.database = None
            logger.info("数据库连接已释放")


# 创建FastAPI应用
app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan
)

# 配置CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 生产环境中应指定具体的 origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _to_http_error(tag: str, request_id: str, start_time: float, e: Exception) -> HTTPException:
    """将异常记录日志并转换为HTTP错误"""
    elapsed = round(_time.time() - start_time, 2)
    if isinstance(e, LedgerError):
        logger.warning(f"[{tag}] 拒绝 | 请求ID: {request_id} | 耗时: {elapsed}秒 | {e.kind}: {e.message}")
        return HTTPException(status_code=e.status_code, detail=e.to_dict())
    logger.error(f"[{tag}] 失败 | 请求ID: {request_id} | 耗时: {elapsed}秒 | 错误: {str(e)}", exc_info=True)
    return HTTPException(status_code=500, detail={"kind": "internal_error", "message": str(e)})


def _ok(message: str, data, request_id: str) -> dict:
    return {"success": True, "message": message, "data": data, "request_id": request_id}


# ===================== 发票导入 =====================
@app.post("/invoices/import", response_model=LedgerResponse, tags=["发票导入"])
async def import_invoice(
        file: UploadFile = File(...),
        commission_rate: str = Form(...),
        db: Session = Depends(get_db)
):
    """导入 NF-e（XML / PDF / 文本），按佣金比例生成佣金单据"""
    request_id = str(uuid.uuid4())
    start_time = _time.time()
    logger.info(f"[发票导入] 开始 | 请求ID: {request_id} | 文件: {file.filename} | 比例: {commission_rate}")
    try:
        content = await file.read()
    finally:
        await file.close()

    suffix = os.path.splitext(file.filename or "")[1]
    try:
        with temporary_upload(content, suffix=suffix, directory=settings.UPLOAD_DIR) as path:
            result = InvoiceImportService(db).import_upload(path, commission_rate, file.filename)
    except Exception as e:
        raise _to_http_error("发票导入", request_id, start_time, e)

    elapsed = round(_time.time() - start_time, 2)
    logger.info(f"[发票导入] 完成 | 请求ID: {request_id} | 耗时: {elapsed}秒 | 发票ID: {result['invoice_id']}")
    return _ok("发票导入成功", result, request_id)


@app.post("/invoices/preview", response_model=LedgerResponse, tags=["发票导入"])
async def preview_invoice(file: UploadFile = File(...), db: Session = Depends(get_db)):
    """解析文档并返回提取结果，不写入数据库"""
    request_id = str(uuid.uuid4())
    start_time = _time.time()
    try:
        content = await file.read()
    finally:
        await file.close()

    try:
        record = InvoiceImportService(db).parse_document(content, file.filename)
    except Exception as e:
        raise _to_http_error("发票预览", request_id, start_time, e)
    return _ok("解析完成", record.to_display(), request_id)


@app.get("/invoices", response_model=LedgerResponse, tags=["发票"])
async def list_invoices(db: Session = Depends(get_db)):
    request_id = str(uuid.uuid4())
    return _ok("查询成功", LedgerService(db).list_invoices(), request_id)


@app.delete("/invoices/{invoice_id}", response_model=LedgerResponse, tags=["发票"])
async def delete_invoice(invoice_id: int, db: Session = Depends(get_db)):
    request_id = str(uuid.uuid4())
    start_time = _time.time()
    logger.info(f"[发票删除] 开始 | 请求ID: {request_id} | 发票ID: {invoice_id}")
    try:
        LedgerService(db).delete_invoice(invoice_id)
    except Exception as e:
        raise _to_http_error("发票删除", request_id, start_time, e)
    return _ok("发票及佣金单据已删除", None, request_id)


# ===================== 佣金单据 =====================
@app.get("/titles", response_model=LedgerResponse, tags=["佣金单据"])
async def list_titles(db: Session = Depends(get_db)):
    request_id = str(uuid.uuid4())
    return _ok("查询成功", LedgerService(db).list_titles(), request_id)


@app.get("/titles/{title_id}", response_model=LedgerResponse, tags=["佣金单据"])
async def get_title(title_id: int, db: Session = Depends(get_db)):
    request_id = str(uuid.uuid4())
    start_time = _time.time()
    try:
        data = LedgerService(db).get_title(title_id)
    except Exception as e:
        raise _to_http_error("佣金单据查询", request_id, start_time, e)
    return _ok("查询成功", data, request_id)


@app.put("/titles/{title_id}", response_model=LedgerResponse, tags=["佣金单据"])
async def update_title(title_id: int, request: TitleUpdateRequest, db: Session = Depends(get_db)):
    request_id = str(uuid.uuid4())
    start_time = _time.time()
    logger.info(f"[佣金单据更新] 开始 | 请求ID: {request_id} | 单据ID: {title_id}")
    try:
        data = LedgerService(db).update_title(title_id, value=request.value, payment_status=request.payment_status)
    except Exception as e:
        raise _to_http_error("佣金单据更新", request_id, start_time, e)
    return _ok("佣金单据更新成功", data, request_id)


# ===================== 结算单 =====================
@app.post("/orders", response_model=LedgerResponse, tags=["结算单"])
async def create_order(request: OrderCreateRequest, db: Session = Depends(get_db)):
    request_id = str(uuid.uuid4())
    start_time = _time.time()
    logger.info(f"[结算单创建] 开始 | 请求ID: {request_id} | 单据数量: {len(request.title_ids)}")
    try:
        data = LedgerService(db).create_order(request.description, request.title_ids)
    except Exception as e:
        raise _to_http_error("结算单创建", request_id, start_time, e)
    elapsed = round(_time.time() - start_time, 2)
    logger.info(f"[结算单创建] 完成 | 请求ID: {request_id} | 耗时: {elapsed}秒 | 结算单ID: {data['order_id']}")
    return _ok("结算单创建成功", data, request_id)


@app.get("/orders", response_model=LedgerResponse, tags=["结算单"])
async def list_orders(db: Session = Depends(get_db)):
    request_id = str(uuid.uuid4())
    return _ok("查询成功", LedgerService(db).list_orders(), request_id)


@app.get("/orders/{order_id}", response_model=LedgerResponse, tags=["结算单"])
async def get_order(order_id: int, db: Session = Depends(get_db)):
    request_id = str(uuid.uuid4())
    start_time = _time.time()
    try:
        data = LedgerService(db).get_order(order_id)
    except Exception as e:
        raise _to_http_error("结算单查询", request_id, start_time, e)
    return _ok("查询成功", data, request_id)


# ===================== 服务发票 (NFS-e) =====================
@app.get("/service-invoices", response_model=LedgerResponse, tags=["服务发票"])
async def list_service_invoices(db: Session = Depends(get_db)):
    request_id = str(uuid.uuid4())
    return _ok("查询成功", ServiceInvoiceService(db).list_service_invoices(), request_id)


@app.get("/service-invoices/{service_invoice_id}", response_model=LedgerResponse, tags=["服务发票"])
async def get_service_invoice(service_invoice_id: int, db: Session = Depends(get_db)):
    request_id = str(uuid.uuid4())
    start_time = _time.time()
    try:
        data = ServiceInvoiceService(db).get_service_invoice(service_invoice_id)
    except Exception as e:
        raise _to_http_error("服务发票查询", request_id, start_time, e)
    return _ok("查询成功", data, request_id)


@app.post("/service-invoices", response_model=LedgerResponse, tags=["服务发票"])
async def create_service_invoice(request: ServiceInvoiceCreateRequest, db: Session = Depends(get_db)):
    request_id = str(uuid.uuid4())
    start_time = _time.time()
    logger.info(f"[服务发票创建] 开始 | 请求ID: {request_id} | 编号: {request.number}")
    try:
        data = ServiceInvoiceService(db).create_service_invoice(request)
    except Exception as e:
        raise _to_http_error("服务发票创建", request_id, start_time, e)
    return _ok("服务发票创建成功", data, request_id)


@app.put("/service-invoices/{service_invoice_id}", response_model=LedgerResponse, tags=["服务发票"])
async def update_service_invoice(
        service_invoice_id: int,
        request: ServiceInvoiceUpdateRequest,
        db: Session = Depends(get_db)
):
    request_id = str(uuid.uuid4())
    start_time = _time.time()
    try:
        data = ServiceInvoiceService(db).update_service_invoice(
            service_invoice_id, request.model_dump(exclude_unset=True)
        )
    except Exception as e:
        raise _to_http_error("服务发票更新", request_id, start_time, e)
    return _ok("服务发票更新成功", data, request_id)


@app.delete("/service-invoices/{service_invoice_id}", response_model=LedgerResponse, tags=["服务发票"])
async def delete_service_invoice(service_invoice_id: int, db: Session = Depends(get_db)):
    request_id = str(uuid.uuid4())
    start_time = _time.time()
    try:
        ServiceInvoiceService(db).delete_service_invoice(service_invoice_id)
    except Exception as e:
        raise _to_http_error("服务发票删除", request_id, start_time, e)
    return _ok("服务发票已删除", None, request_id)
