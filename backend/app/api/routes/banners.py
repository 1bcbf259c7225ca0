from contextlib import contextmanager
from typing import List, Optional, Tuple
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import admin_only, get_current_identity, manager_or_admin
from app.core.config import settings
from app.db.session import get_db
from app.models.banner import Banner, utcnow
from app.services import banners as banner_service
from app.services.errors import NotFoundError, ServiceError, ValidationError

router = APIRouter()

""" Banner endpoints.

Public: listing, active feed per display location, single banner, impression/click tracking.
Admin: create/update/delete/toggle/reorder. Analytics: manager or admin.
"""

@contextmanager
def _service_call():
    try:
        yield
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    except ServiceError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))

def _banner_dict(b: Banner, now=None) -> dict:
    return {
        'id': b.id,
        'title': b.title,
        'description': b.description,
        'image': b.image,
        'link': b.link,
        'is_active': b.is_active,
        'order': b.order,
        'category': b.category,
        'audience': b.audience,
        'display_location': b.locations,
        'start_date': b.start_at,
        'end_date': b.end_at,
        'impressions': b.impressions,
        'clicks': b.clicks,
        'ctr': banner_service.format_ctr(b.clicks, b.impressions),
        'is_live': banner_service.is_live(b, now=now),
        'created_by': b.created_by,
        'created_at': b.created_at,
        'updated_at': b.updated_at,
    }

@router.get('/', response_model=dict)
def list_banners(
    db: Session = Depends(get_db),
    is_active: Optional[bool] = None,
    category: Optional[str] = None,
    audience: Optional[str] = None,
    location: Optional[str] = Query(None, description="Display location the banner must target"),
    start_from: Optional[str] = Query(None, description="start_date >= ISO datetime"),
    start_to: Optional[str] = Query(None, description="start_date <= ISO datetime"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    filters = {
        'is_active': is_active,
        'category': category,
        'audience': audience,
        'location': location,
        'start_from': start_from,
        'start_to': start_to,
    }
    with _service_call():
        result = banner_service.list_banners(db, filters, page=page, page_size=limit)
    now = utcnow()
    return {
        'success': True,
        'data': [_banner_dict(b, now) for b in result.items],
        'pagination': {
            'page': result.page,
            'limit': result.page_size,
            'total': result.total,
            'pages': result.pages,
        },
    }

@router.get('/active', response_model=dict)
@router.get('/active/{location}', response_model=dict)
def active_banners(location: str = 'home', db: Session = Depends(get_db)):
    now = utcnow()
    with _service_call():
        items = banner_service.active_for(db, location, now=now)
    return {'success': True, 'data': [_banner_dict(b, now) for b in items]}

@router.put('/reorder', dependencies=[Depends(admin_only)], response_model=dict)
def reorder_banners(payload: dict, db: Session = Depends(get_db)):
    with _service_call():
        applied = banner_service.reorder_banners(db, payload.get('banner_orders'))
    return {'success': True, 'message': 'Banners reordered successfully', 'updated': applied}

@router.get('/{banner_id}', response_model=dict)
def get_banner(banner_id: int, db: Session = Depends(get_db)):
    with _service_call():
        b = banner_service.get_banner(db, banner_id)
    return {'success': True, 'data': _banner_dict(b)}

@router.post('/', dependencies=[Depends(admin_only)], status_code=status.HTTP_201_CREATED, response_model=dict)
def create_banner(
    payload: dict,
    db: Session = Depends(get_db),
    identity: Tuple[str, List[str]] = Depends(get_current_identity),
):
    actor_id, _roles = identity
    with _service_call():
        b = banner_service.create_banner(db, payload, creator_id=actor_id)
    return {'success': True, 'data': _banner_dict(b), 'message': 'Banner created successfully'}

@router.put('/{banner_id}', dependencies=[Depends(admin_only)], response_model=dict)
def update_banner(banner_id: int, payload: dict, db: Session = Depends(get_db)):
    with _service_call():
        b = banner_service.update_banner(db, banner_id, payload)
    return {'success': True, 'data': _banner_dict(b), 'message': 'Banner updated successfully'}

@router.delete('/{banner_id}', dependencies=[Depends(admin_only)], response_model=dict)
def delete_banner(banner_id: int, db: Session = Depends(get_db)):
    with _service_call():
        banner_service.delete_banner(db, banner_id)
    return {'success': True, 'message': 'Banner deleted successfully'}

@router.patch('/{banner_id}/toggle', dependencies=[Depends(admin_only)], response_model=dict)
def toggle_banner(banner_id: int, db: Session = Depends(get_db)):
    with _service_call():
        b, state = banner_service.toggle_active(db, banner_id)
    return {'success': True, 'data': _banner_dict(b), 'message': f'Banner {state} successfully'}

# Tracking endpoints are hit on every render/click; kept public and write-only.
@router.post('/{banner_id}/impression', response_model=dict)
def record_impression(banner_id: int, db: Session = Depends(get_db)):
    with _service_call():
        banner_service.record_impression(db, banner_id)
    return {'success': True, 'message': 'Impression recorded'}

@router.post('/{banner_id}/click', response_model=dict)
def record_click(banner_id: int, db: Session = Depends(get_db)):
    with _service_call():
        banner_service.record_click(db, banner_id)
    return {'success': True, 'message': 'Click recorded'}

@router.get('/{banner_id}/analytics', dependencies=[Depends(manager_or_admin)], response_model=dict)
def banner_analytics(banner_id: int, db: Session = Depends(get_db)):
    with _service_call():
        data = banner_service.banner_analytics(db, banner_id)
    return {'success': True, 'data': data}
