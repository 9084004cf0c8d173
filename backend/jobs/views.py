import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from services.dispatch import (
    ConflictError,
    DispatchError,
    NotFoundError,
    UnauthorizedResponseError,
    build_coordinator,
)
from services.dispatch import statistics
from .models import MatchingRequest, ReassignmentQueueItem
from .permissions import IsCustomer, IsDriver, IsOpsUser
from .serializers import (
    AssignmentSerializer,
    GeofenceSerializer,
    JobCancelSerializer,
    JobCreateSerializer,
    JobSerializer,
    MatchingPassSerializer,
    AssignmentResponseSerializer,
    ReassignmentQueueItemSerializer,
)

logger = logging.getLogger(__name__)


def error_response(exc: DispatchError) -> Response:
    """Translate a dispatch error into the matching HTTP response."""
    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, UnauthorizedResponseError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, ConflictError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return Response({'error': str(exc)}, status=code)


def _load_job(job_id):
    try:
        return MatchingRequest.objects.select_related('customer', 'driver__user').get(pk=job_id)
    except MatchingRequest.DoesNotExist:
        raise NotFoundError(f"Job {job_id} not found")


# ==================== Customer Job APIs ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated, IsCustomer])
def create_job(request):
    """Submit an order or ride and start looking for a driver"""
    serializer = JobCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    try:
        result = build_coordinator().submit_job(request.user, **serializer.validated_data)
    except DispatchError as e:
        return error_response(e)

    return Response({
        'message': result.message,
        'job': JobSerializer(result.job).data,
        **(result.extra or {}),
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_job(request, job_id):
    """Job details for its customer, its driver or ops"""
    try:
        job = _load_job(job_id)
    except NotFoundError as e:
        return error_response(e)

    profile = getattr(request.user, 'driver_profile', None)
    is_driver = profile is not None and job.driver_id == profile.id
    if not (job.customer_id == request.user.id or is_driver or request.user.is_ops):
        return Response({'error': 'Job not found'}, status=status.HTTP_404_NOT_FOUND)

    data = JobSerializer(job).data
    data['geofences'] = GeofenceSerializer(job.geofences.all(), many=True).data
    return Response(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_job(request, job_id):
    """Cancel a job (its customer or ops)"""
    try:
        job = _load_job(job_id)
    except NotFoundError as e:
        return error_response(e)

    if job.customer_id != request.user.id and not request.user.is_ops:
        return Response({'error': 'Job not found'}, status=status.HTTP_404_NOT_FOUND)

    serializer = JobCancelSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    reason = serializer.validated_data.get('reason') or 'No reason provided'

    try:
        result = build_coordinator().cancel_job(job.id, reason)
    except DispatchError as e:
        return error_response(e)

    return Response({
        'message': result.message,
        'job': JobSerializer(result.job).data,
        **(result.extra or {}),
    })


# ==================== Driver Job Actions ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def respond_to_assignment(request, assignment_id):
    """Driver accepts or rejects the offer sent to them"""
    serializer = AssignmentResponseSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    try:
        assignment = build_coordinator().respond(
            assignment_id,
            serializer.validated_data['response'],
            request.user.driver_profile.id,
            serializer.validated_data.get('reason', ''),
        )
    except DispatchError as e:
        return error_response(e)

    if assignment.status == 'accepted':
        message = 'Job accepted! Navigate to pickup location.'
    else:
        message = 'Offer declined.'
    return Response({
        'message': message,
        'assignment': AssignmentSerializer(assignment).data,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def start_job(request, job_id):
    """Driver picked up the order/passenger"""
    try:
        result = build_coordinator().start_job(job_id, request.user.driver_profile.id)
    except DispatchError as e:
        return error_response(e)
    return Response({'message': result.message, 'job': JobSerializer(result.job).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def complete_job(request, job_id):
    """Driver confirms drop-off"""
    try:
        result = build_coordinator().complete_job(job_id, request.user.driver_profile.id)
    except DispatchError as e:
        return error_response(e)
    return Response({'message': result.message, 'job': JobSerializer(result.job).data})


# ==================== Matching Ops APIs ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated, IsOpsUser])
def find_drivers(request):
    """Run a matching pass without creating offers"""
    serializer = MatchingPassSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    try:
        job = _load_job(data['job_id'])
        candidates = build_coordinator().find_candidates(job, data.get('radius_km'), data.get('limit'))
    except DispatchError as e:
        return error_response(e)

    return Response({
        'job_id': job.id,
        'count': len(candidates),
        'candidates': [candidate.to_dict() for candidate in candidates],
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsOpsUser])
def assign_job(request):
    """Run a matching pass and start offering the job"""
    serializer = MatchingPassSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    coordinator = build_coordinator()
    try:
        job = _load_job(data['job_id'])
        candidates = coordinator.find_candidates(job, data.get('radius_km'), data.get('limit'))
        assignment_ids = coordinator.assign(job, candidates)
    except DispatchError as e:
        return error_response(e)

    return Response({
        'job_id': job.id,
        'candidates': len(candidates),
        'assignment_ids': assignment_ids,
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsOpsUser])
def matching_health(request):
    """Queue depths, acceptance and a health score for dispatch"""
    try:
        snapshot = statistics.health_snapshot()
    except Exception:
        logger.exception("Failed to build dispatch health snapshot")
        return Response(
            {'status': statistics.CRITICAL, 'score': 0, 'error': 'Internal server error'},
            status=status.HTTP_503_SERVICE_UNAVAILABLE
        )
    return Response(snapshot)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsOpsUser])
def matching_statistics(request):
    """Matching outcomes over the last ?hours=N (default 24)"""
    try:
        hours = int(request.query_params.get('hours', 24))
        driver_id = request.query_params.get('driver_id')
        driver_id = int(driver_id) if driver_id else None
    except ValueError:
        return Response({'error': 'hours and driver_id must be integers'}, status=status.HTTP_400_BAD_REQUEST)
    if not 1 <= hours <= 24 * 90:
        return Response({'error': 'hours must be between 1 and 2160'}, status=status.HTTP_400_BAD_REQUEST)

    return Response(statistics.matching_statistics(hours=hours, driver_id=driver_id))


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsOpsUser])
def reassignment_queue(request):
    """List reassignment queue items, optionally ?status=pending"""
    items = ReassignmentQueueItem.objects.select_related('job')
    item_status = request.query_params.get('status')
    if item_status:
        items = items.filter(status=item_status)
    items = items[:100]

    serializer = ReassignmentQueueItemSerializer(items, many=True)
    return Response({'count': len(serializer.data), 'items': serializer.data})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsOpsUser])
def process_reassignment_queue(request):
    """Manual tick: expire overdue offers and process due queue items"""
    result = build_coordinator().tick()
    return Response(result)
