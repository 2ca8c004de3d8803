"""FastAPI 主应用"""

from typing import Any, Dict, List, Optional

import pandas as pd
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from datazones.core.config import settings
from datazones.core.errors import RecomputeError
from datazones.engines.session import ConfigurationSession, OperationResult, get_session_manager
from datazones.models.column import ColumnCatalog
from datazones.utils.logger import log


# 创建应用
app = FastAPI(
    title="Data Zones",
    description="数据集转换配置与图表自动绑定服务",
    version="0.1.0",
    debug=settings.debug
)

# CORS 配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# 请求模型
class CreateSessionRequest(BaseModel):
    """创建会话"""
    columns: List[Dict[str, Any]] = Field(..., description="数据集表头 {id, name, type, dateFormat}")
    rows: Optional[List[Any]] = Field(None, description="可选数据行（数组或对象）")
    chart_type: str = "line"
    date_format: Optional[str] = None


class AssignRequest(BaseModel):
    zone: str
    column_id: str


class MoveRequest(BaseModel):
    source_zone: str
    target_zone: str
    entry_id: str


class RemoveRequest(BaseModel):
    zone: str
    entry_id: str


class ClearRequest(BaseModel):
    zone: str


class ChartTypeRequest(BaseModel):
    chart_type: str


def _get_session(session_id: str) -> ConfigurationSession:
    try:
        return get_session_manager().get(session_id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e))


async def _respond(session: ConfigurationSession, result: OperationResult, error_status: int = 409):
    """成功返回会话快照；被拒绝的操作返回 {code, message}"""
    if not result.ok:
        return JSONResponse(status_code=error_status, content={"code": result.code, "message": result.message})
    await session.settle()
    return session.snapshot()


@app.get("/")
async def root():
    """根路径"""
    return {
        "name": "Data Zones",
        "version": "0.1.0",
        "status": "running"
    }


@app.get("/health")
async def health():
    """健康检查"""
    return {"status": "healthy", **get_session_manager().get_stats()}


@app.post("/sessions")
async def create_session(request: CreateSessionRequest):
    """创建配置会话"""
    catalog = ColumnCatalog.from_headers(request.columns, default_date_format=request.date_format)
    data = None
    if request.rows is not None:
        if request.rows and isinstance(request.rows[0], dict):
            data = pd.DataFrame(request.rows)
        else:
            data = pd.DataFrame(request.rows, columns=[c.id for c in catalog])
    try:
        session = get_session_manager().create(catalog, chart_type=request.chart_type, data=data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.snapshot()


@app.get("/sessions/{session_id}")
async def get_session(session_id: str):
    return _get_session(session_id).snapshot()


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    try:
        get_session_manager().delete(session_id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "message": f"会话 {session_id} 已关闭"}


@app.post("/sessions/{session_id}/assign")
async def assign(session_id: str, request: AssignRequest):
    session = _get_session(session_id)
    try:
        result = session.assign(request.zone, request.column_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return await _respond(session, result)


@app.post("/sessions/{session_id}/move")
async def move(session_id: str, request: MoveRequest):
    session = _get_session(session_id)
    try:
        result = session.move(request.source_zone, request.target_zone, request.entry_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return await _respond(session, result)


@app.post("/sessions/{session_id}/remove")
async def remove(session_id: str, request: RemoveRequest):
    session = _get_session(session_id)
    try:
        result = session.remove(request.zone, request.entry_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return await _respond(session, result)


@app.post("/sessions/{session_id}/drag-end")
async def drag_end(session_id: str, request: RemoveRequest):
    """拖到区域外结束；刚被移动的条目只清除标记"""
    session = _get_session(session_id)
    try:
        result = session.drag_ended_outside(request.zone, request.entry_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return await _respond(session, result)


@app.post("/sessions/{session_id}/clear")
async def clear(session_id: str, request: ClearRequest):
    session = _get_session(session_id)
    try:
        result = session.clear_zone(request.zone)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return await _respond(session, result)


@app.post("/sessions/{session_id}/chart-type")
async def set_chart_type(session_id: str, request: ChartTypeRequest):
    session = _get_session(session_id)
    return await _respond(session, session.set_chart_type(request.chart_type))


@app.post("/sessions/{session_id}/mode-switch/confirm")
async def confirm_mode_switch(session_id: str):
    session = _get_session(session_id)
    return await _respond(session, session.confirm_mode_switch())


@app.post("/sessions/{session_id}/mode-switch/cancel")
async def cancel_mode_switch(session_id: str):
    session = _get_session(session_id)
    return await _respond(session, session.cancel_mode_switch())


@app.post("/sessions/{session_id}/import")
async def import_config(session_id: str, config: Dict[str, Any]):
    """导入配置；不合法时返回 422 并保留原配置"""
    session = _get_session(session_id)
    return await _respond(session, session.import_config(config), error_status=422)


@app.post("/sessions/{session_id}/reset")
async def reset(session_id: str):
    session = _get_session(session_id)
    return await _respond(session, session.reset())


@app.get("/sessions/{session_id}/export")
async def export_config(session_id: str):
    return _get_session(session_id).export_config()


@app.get("/sessions/{session_id}/preview")
async def preview(session_id: str):
    result = _get_session(session_id).preview()
    return {"sections": [s.model_dump() for s in result.sections], "text": result.render_text()}


@app.get("/sessions/{session_id}/data")
async def recompute(session_id: str):
    """按当前配置重算数据"""
    session = _get_session(session_id)
    if session.data is None:
        raise HTTPException(status_code=400, detail="会话没有关联数据")
    try:
        result = session.recompute()
    except RecomputeError as e:
        log.error(f"重算失败: {e.message}")
        raise HTTPException(status_code=500, detail=e.to_dict())
    return result.model_dump(mode="json")


if __name__ == "__main__":
    import uvicorn

    log.info(f"启动服务: {settings.api_host}:{settings.api_port}")

    uvicorn.run(
        "datazones.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
