from flask import Blueprint, request, jsonify, make_response
from flask import stream_with_context
from app import db
from models import Log
from auth import admin_only
from exceptions import ConfigurationError
from chardet import detect
from datetime import datetime
import logging
import traceback
import csv
import io
import urllib.parse

utility_bp = Blueprint('utility', __name__, url_prefix='/api/utility')


def export_to_excel_csv(data_iterable, filename, headers=None):
    """
    Generic function to export data to Excel-compatible CSV format using streaming.

    Args:
        data_iterable: An iterable (e.g., list, generator) yielding dictionaries or lists
                       containing the data to export.
        filename: The filename for the exported file (without extension)
        headers: Optional list of column headers. If None and the first item yielded
                 is a dict, dict keys will be used as headers. If the first item is
                 a list, it's assumed to be headers if headers=None.

    Returns:
        A Flask response object with the CSV file, streamed.
    """
    # Use a generator for streaming the response
    def generate_csv():
        output = io.StringIO()
        # Comma keeps the header row identical to the column keys read back on upload
        writer = csv.writer(output)

        # Write UTF-8 BOM for Excel compatibility
        yield b'\xef\xbb\xbf'

        data_iterator = iter(data_iterable)
        first_item = None
        processed_first = False
        is_list_of_dicts = False

        # Need to peek at the first item to determine headers/type
        try:
            first_item = next(data_iterator)
            processed_first = True
            is_list_of_dicts = isinstance(first_item, dict)
        except StopIteration:
            pass

        # Determine and write headers
        actual_headers = headers
        if not actual_headers and first_item is not None:
            if is_list_of_dicts:
                actual_headers = list(first_item.keys())
            else:
                # First row is the header row
                actual_headers = first_item
                processed_first = False

        if actual_headers:
            writer.writerow(actual_headers)
            yield output.getvalue().encode('utf-8')
            output.seek(0)
            output.truncate(0)

        def encode_row(row):
            if is_list_of_dicts:
                writer.writerow([row.get(key, '') for key in actual_headers])
            else:
                writer.writerow(row)
            chunk = output.getvalue().encode('utf-8')
            output.seek(0)
            output.truncate(0)
            return chunk

        if processed_first:
            yield encode_row(first_item)

        for row in data_iterator:
            yield encode_row(row)

    # --- Prepare Response ---
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    full_filename = f"{filename}_{timestamp}.csv"

    try:
        log = Log(action="EXPORT_DATA_STREAM",
                  description=f"Started exporting data stream to: {full_filename}")
        db.session.add(log)
        db.session.commit()
    except Exception as e:
        logging.error(f"Error logging CSV export for {filename}: {str(e)}\n{traceback.format_exc()}")
        db.session.rollback()
        raise

    response = make_response(stream_with_context(generate_csv()))

    # Use RFC 5987 encoding for the filename to support international characters
    ascii_filename = full_filename.encode('ascii', 'replace').decode()
    encoded_filename = urllib.parse.quote(full_filename)
    content_disposition = f"attachment; filename=\"{ascii_filename}\"; filename*=UTF-8''{encoded_filename}"

    response.headers["Content-Disposition"] = content_disposition
    response.headers["Content-type"] = "text/csv; charset=UTF-8"
    return response


def decode_upload(raw_data):
    """Decode an uploaded text file, detecting its encoding"""
    if not raw_data:
        raise ConfigurationError("Empty file uploaded")

    encoding_result = detect(raw_data)
    text = None

    # Use detected encoding with high confidence or try multiple fallbacks
    if encoding_result and encoding_result.get('encoding') and encoding_result['confidence'] > 0.7:
        try:
            text = raw_data.decode(encoding_result['encoding'])
        except (UnicodeDecodeError, LookupError):
            text = None

    if text is None:
        for enc in ['utf-8-sig', 'utf-8', 'cp1252', 'latin-1']:
            try:
                text = raw_data.decode(enc)
                logging.info(f"Successfully decoded file with {enc} encoding")
                break
            except UnicodeDecodeError:
                continue

    if text is None:
        # Last resort: use latin-1 with replacement
        text = raw_data.decode('latin-1', errors='replace')
        logging.warning("Decoded file with latin-1 and error replacement - some characters may be incorrect")

    return text.lstrip('\ufeff')


def uploaded_text(field='file'):
    """Text of an uploaded file, or of a raw text/csv request body"""
    if field in request.files and request.files[field].filename:
        return decode_upload(request.files[field].read())
    if request.data:
        return decode_upload(request.data)
    raise ConfigurationError("No file uploaded")


def _filtered_logs():
    action_filter = request.args.get('action', '')
    date_from = request.args.get('date_from', '')
    date_to = request.args.get('date_to', '')

    query = Log.query
    if action_filter:
        query = query.filter(Log.action.like(f'%{action_filter}%'))

    try:
        if date_from:
            query = query.filter(Log.timestamp >= datetime.strptime(date_from, '%Y-%m-%d'))
        if date_to:
            date_to_obj = datetime.strptime(date_to, '%Y-%m-%d')
            # Include the entire day
            date_to_obj = datetime.combine(date_to_obj.date(), datetime.max.time())
            query = query.filter(Log.timestamp <= date_to_obj)
    except ValueError:
        raise ConfigurationError("Dates must use the YYYY-MM-DD format")

    return query.order_by(Log.timestamp.desc(), Log.id.desc())


@utility_bp.route('/logs')
@admin_only
def view_logs():
    """Audit log entries, newest first"""
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', 50, type=int)

    logs = _filtered_logs().paginate(page=page, per_page=per_page, error_out=False)
    actions = [action[0] for action in db.session.query(Log.action).distinct().all()]

    return jsonify({
        'success': True,
        'logs': [
            {
                'id': log.id,
                'timestamp': log.timestamp.isoformat() if log.timestamp else None,
                'action': log.action,
                'description': log.description
            }
            for log in logs.items
        ],
        'actions': sorted(actions),
        'page': logs.page,
        'pages': logs.pages,
        'total': logs.total
    })


@utility_bp.route('/logs/export', methods=['GET'])
@admin_only
def export_logs():
    """Export logs to a CSV file"""
    logs = _filtered_logs().all()
    headers = ['Timestamp', 'Action', 'Description']

    data = [
        {
            'Timestamp': log.timestamp.strftime('%Y-%m-%d %H:%M:%S') if log.timestamp else '',
            'Action': log.action,
            'Description': log.description
        }
        for log in logs
    ]
    return export_to_excel_csv(data, "clo_tracker_logs", headers)
